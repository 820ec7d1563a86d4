"""
Allocation / Rebalancing Engine.

Moves capital between the idle balance and adapters, and between
adapters. Adapter failures are caught at this boundary: on the
deposit/withdraw path they become a full-operation failure, on the
rebalance path a failed second leg degrades to funds parked idle.
"""

from decimal import Decimal
from typing import List, NamedTuple, Optional, Sequence

from yield_vault.core import (
    AdapterFailureError,
    AdapterNotHealthyError,
    EventType,
    InsufficientBalanceError,
    VaultAuditLogger,
    checked_add,
    checked_sub,
    get_audit_logger,
    get_logger,
    require_uint,
)

from ..models.decision import DecisionDraft, DecisionType, OutcomeStatus
from ..models.state import VaultState
from .access import AccessController, Permission
from .audit_log import DecisionAuditLog
from .guard import Transaction
from .registry import StrategyRegistry

logger = get_logger(__name__)


class PullLeg(NamedTuple):
    """Value returned by one adapter during a withdrawal."""

    adapter_id: str
    requested: int
    returned: int


class DrainLeg(NamedTuple):
    """Result of an emergency drain of one adapter."""

    adapter_id: str
    drained: int
    book_value: int


class AllocationEngine:
    """
    Executes capital moves against the registry and the vault state.

    Every move updates ``idle_assets`` and ``AdapterRecord.allocated`` by
    the amount actually moved, so ``total_assets`` stays equal to
    idle plus allocated.

    Example:
        >>> engine = AllocationEngine(state, registry, audit_log, access)
        >>> ok = await engine.reallocate("agent", "aave", "compound", 1_000, reason="apy")
    """

    def __init__(
        self,
        state: VaultState,
        registry: StrategyRegistry,
        audit_log: DecisionAuditLog,
        access: AccessController,
        audit_logger: Optional[VaultAuditLogger] = None,
    ):
        self._state = state
        self._registry = registry
        self._audit_log = audit_log
        self._access = access
        self._audit = audit_logger or get_audit_logger()

    # =========================================================================
    # Deposit path
    # =========================================================================

    async def place_idle(self, amount: int) -> Optional[str]:
        """
        Place ``amount`` of idle value into the active adapter.

        Returns:
            The adapter id that received the funds, or None when no adapter
            is active (funds stay idle)

        Raises:
            AdapterNotHealthyError: Active adapter is unhealthy
            AdapterFailureError: ``place`` raised or returned False
        """
        active_id = self._state.active_adapter_id
        if active_id is None or amount == 0:
            return None

        if not await self._registry.check_health(active_id):
            raise AdapterNotHealthyError(
                f"Active adapter {active_id} is not healthy; deposit refused",
                adapter_id=active_id,
            )

        if not await self._place(active_id, amount):
            raise AdapterFailureError(
                f"Adapter {active_id} refused to place {amount}",
                adapter_id=active_id,
                details={"amount": amount},
            )

        self._move_to_adapter(active_id, amount)
        await self._registry.update_cache(active_id)
        return active_id

    # =========================================================================
    # Withdrawal path
    # =========================================================================

    async def pull_for_withdrawal(
        self,
        amount: int,
        tx: Optional[Transaction] = None,
    ) -> List[PullLeg]:
        """
        Bring idle up to ``amount`` by pulling from adapters.

        The active adapter is pulled first, then any other adapter still
        holding book value. Every returned amount is booked as idle right
        away and checkpointed on ``tx``, so a later failure cannot lose it.
        The caller decides what a remaining shortfall means.

        Raises:
            AdapterFailureError: A ``pull`` call raised
        """
        legs: List[PullLeg] = []
        shortfall = amount - self._state.idle_assets

        for adapter_id in self._sources():
            if shortfall <= 0:
                break
            record = self._state.adapters[adapter_id]
            request = min(shortfall, record.allocated)
            if request == 0:
                continue

            returned = await self._pull(adapter_id, request)
            if returned:
                self._move_to_idle(adapter_id, returned)
                if tx is not None:
                    tx.checkpoint()
                await self._registry.update_cache(adapter_id)
            if returned < request:
                logger.warning(
                    f"Partial pull from {adapter_id}: requested {request}, returned {returned}"
                )
            legs.append(PullLeg(adapter_id, request, returned))
            shortfall -= returned

        return legs

    async def emergency_egress(
        self,
        amount: int,
        tx: Optional[Transaction] = None,
    ) -> List[DrainLeg]:
        """
        Drain adapters until idle covers ``amount``, ignoring health.

        Each drained adapter's book value is replaced by what it actually
        returned; the difference is realised in ``total_assets``. A drained
        active adapter is deactivated.
        If nothing at all is left, outstanding shares are written off so
        the vault returns to the empty state.

        Raises:
            AdapterFailureError: ``emergency_drain`` raised
        """
        legs: List[DrainLeg] = []

        for adapter_id in self._sources():
            if self._state.idle_assets >= amount:
                break
            record = self._state.adapters[adapter_id]
            adapter = self._registry.get(adapter_id)

            try:
                drained = int(await adapter.emergency_drain())
            except Exception as e:
                raise AdapterFailureError(
                    f"Emergency drain of {adapter_id} failed: {e}",
                    adapter_id=adapter_id,
                ) from e
            if drained < 0:
                raise AdapterFailureError(
                    f"Emergency drain of {adapter_id} returned a negative amount",
                    adapter_id=adapter_id,
                    details={"drained": drained},
                )

            book = record.allocated
            self._state.total_assets = checked_add(
                checked_sub(self._state.total_assets, book), drained
            )
            self._state.idle_assets = checked_add(self._state.idle_assets, drained)
            record.allocated = 0
            record.reported_assets = 0
            if record.is_active:
                self._registry.deactivate_active()

            if drained != book:
                logger.warning(
                    f"Emergency drain of {adapter_id} realised {drained - book:+d} "
                    f"against book value {book}"
                )
            if self._state.total_assets == 0 and self._state.total_shares > 0:
                written_off = self._state.write_off_shares()
                logger.error(
                    f"Emergency drain of {adapter_id} left the vault empty; "
                    f"{written_off} outstanding shares written off"
                )
                self._audit.control_change(
                    EventType.SHARES_WRITTEN_OFF,
                    actor="emergency_withdraw",
                    target=adapter_id,
                    shares=written_off,
                    book_value=book,
                )
            if tx is not None:
                tx.checkpoint()
            legs.append(DrainLeg(adapter_id, drained, book))

        return legs

    # =========================================================================
    # Rebalance
    # =========================================================================

    async def reallocate(
        self,
        caller: str,
        from_adapter_id: Optional[str],
        to_adapter_id: Optional[str],
        amount: int,
        reason: str = "",
        confidence: Optional[Decimal] = None,
        external_refs: Sequence[str] = (),
        tx: Optional[Transaction] = None,
    ) -> bool:
        """
        Move ``amount`` from one side to the other; None means idle.

        The REBALANCE decision is appended before anything moves, so every
        attempted move is auditable. Its outcome is recorded afterwards.

        Returns:
            True when the move completed (or was a no-op), False when the
            destination leg failed and the pulled funds were parked idle

        Raises:
            UnauthorizedError: Caller lacks the operator role
            PausedError: Vault is paused
            AdapterNotFoundError: Unknown adapter on either leg
            AdapterNotHealthyError: Destination is unhealthy
            InsufficientBalanceError: Source holds less than ``amount``
            AdapterFailureError: Source ``pull`` raised
        """
        self._access.require(Permission.FUNDS_REALLOCATE, caller)
        self._access.require_running("reallocate")
        require_uint(amount)
        for adapter_id in (from_adapter_id, to_adapter_id):
            if adapter_id is not None:
                self._registry.get(adapter_id)

        sequence_id = self._audit_log.append(
            DecisionDraft(
                decision_type=DecisionType.REBALANCE,
                amount=amount,
                from_adapter_id=from_adapter_id,
                to_adapter_id=to_adapter_id,
                reason=reason,
                actor=caller,
                confidence=confidence,
                external_refs=tuple(external_refs),
            )
        )

        if from_adapter_id == to_adapter_id or amount == 0:
            for adapter_id in {from_adapter_id, to_adapter_id} - {None}:
                await self._registry.update_cache(adapter_id)
            self._audit_log.record_outcome(sequence_id, OutcomeStatus.NOOP, "nothing to move")
            return True

        # Health gate on the destination only; egress is never gated
        if to_adapter_id is not None and not await self._registry.check_health(to_adapter_id):
            self._reject(sequence_id, f"destination {to_adapter_id} unhealthy")
            raise AdapterNotHealthyError(
                f"Destination adapter {to_adapter_id} is not healthy",
                adapter_id=to_adapter_id,
                details={"sequence_id": sequence_id},
            )

        available = self._available(from_adapter_id)
        if amount > available:
            self._reject(sequence_id, f"source holds {available}, requested {amount}")
            raise InsufficientBalanceError(
                f"{from_adapter_id or 'idle'} holds {available}, cannot move {amount}",
                details={"sequence_id": sequence_id, "available": available, "amount": amount},
            )

        # Leg 1: source -> idle
        moved = amount
        if from_adapter_id is not None:
            try:
                moved = await self._pull(from_adapter_id, amount)
            except AdapterFailureError as e:
                self._reject(sequence_id, e.message)
                raise
            if moved:
                self._move_to_idle(from_adapter_id, moved)
                if tx is not None:
                    tx.checkpoint()
            if moved == 0:
                self._reject(sequence_id, f"{from_adapter_id} returned nothing")
                await self._refresh_legs(from_adapter_id, to_adapter_id)
                return False

        # Leg 2: idle -> destination
        if to_adapter_id is not None:
            if not await self._place(to_adapter_id, moved):
                self._audit_log.record_outcome(
                    sequence_id,
                    OutcomeStatus.PARKED_IDLE,
                    f"place into {to_adapter_id} failed; {moved} parked idle",
                    executed_amount=moved if from_adapter_id is not None else 0,
                )
                await self._refresh_legs(from_adapter_id, to_adapter_id)
                logger.warning(
                    f"Rebalance #{sequence_id}: destination {to_adapter_id} failed, "
                    f"{moved} parked idle"
                )
                return False
            self._move_to_adapter(to_adapter_id, moved)
            self._registry.activate(to_adapter_id)
        elif (
            from_adapter_id is not None
            and from_adapter_id == self._state.active_adapter_id
            and self._state.adapters[from_adapter_id].allocated == 0
        ):
            self._registry.deactivate_active()

        await self._refresh_legs(from_adapter_id, to_adapter_id)

        detail = "completed"
        if moved < amount:
            detail = f"partial pull: requested {amount}, moved {moved}"
        self._audit_log.record_outcome(
            sequence_id, OutcomeStatus.EXECUTED, detail, executed_amount=moved
        )
        self._audit.control_change(
            EventType.REALLOCATION,
            actor=caller,
            target=f"{from_adapter_id or 'idle'} -> {to_adapter_id or 'idle'}",
            sequence_id=sequence_id,
            amount=moved,
        )
        logger.info(
            f"Rebalance #{sequence_id}: {from_adapter_id or 'idle'} -> "
            f"{to_adapter_id or 'idle'} moved {moved}/{amount}"
        )
        return True

    # =========================================================================
    # Internals
    # =========================================================================

    def _sources(self) -> List[str]:
        """Adapters to draw from: active first, then the largest holdings."""
        active = self._state.active_adapter_id
        others = sorted(
            (r for r in self._state.adapters.values() if r.adapter_id != active and r.allocated > 0),
            key=lambda r: r.allocated,
            reverse=True,
        )
        sources = [active] if active is not None else []
        return sources + [r.adapter_id for r in others]

    def _available(self, adapter_id: Optional[str]) -> int:
        if adapter_id is None:
            return self._state.idle_assets
        return self._state.adapters[adapter_id].allocated

    async def _place(self, adapter_id: str, amount: int) -> bool:
        adapter = self._registry.get(adapter_id)
        try:
            return bool(await adapter.place(amount))
        except Exception as e:
            logger.error(f"place({amount}) on {adapter_id} raised: {e}")
            return False

    async def _pull(self, adapter_id: str, amount: int) -> int:
        """Pull and normalise the returned amount to ``[0, amount]``."""
        adapter = self._registry.get(adapter_id)
        try:
            returned = await adapter.pull(amount)
        except Exception as e:
            raise AdapterFailureError(
                f"pull({amount}) on {adapter_id} failed: {e}",
                adapter_id=adapter_id,
            ) from e

        if isinstance(returned, bool) or not isinstance(returned, int) or returned < 0:
            raise AdapterFailureError(
                f"pull on {adapter_id} returned an invalid amount: {returned!r}",
                adapter_id=adapter_id,
            )
        if returned > amount:
            logger.warning(
                f"pull on {adapter_id} returned {returned}, more than requested {amount}; clamped"
            )
            returned = amount
        return returned

    def _move_to_idle(self, adapter_id: str, amount: int) -> None:
        record = self._state.adapters[adapter_id]
        record.allocated = checked_sub(record.allocated, amount)
        self._state.idle_assets = checked_add(self._state.idle_assets, amount)

    def _move_to_adapter(self, adapter_id: str, amount: int) -> None:
        record = self._state.adapters[adapter_id]
        self._state.idle_assets = checked_sub(self._state.idle_assets, amount)
        record.allocated = checked_add(record.allocated, amount)

    def _reject(self, sequence_id: int, detail: str) -> None:
        self._audit_log.record_outcome(sequence_id, OutcomeStatus.REJECTED, detail)
        logger.warning(f"Rebalance #{sequence_id} rejected: {detail}")

    async def _refresh_legs(self, *adapter_ids: Optional[str]) -> None:
        for adapter_id in adapter_ids:
            if adapter_id is not None:
                await self._registry.update_cache(adapter_id)
