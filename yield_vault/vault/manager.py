"""
Vault Engine.

Facade over the share ledger, strategy registry, allocation engine,
decision audit log and access control. Every mutating operation runs
under the mutation guard: serialised, all-or-nothing, invariant-checked
and persisted before the guard is released.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from yield_vault.config.models import AppConfig, VaultConfig
from yield_vault.core import (
    VaultAuditLogger,
    VaultError,
    configure_logging,
    get_audit_logger,
    get_logger,
    with_correlation_id,
)

from .adapters.base import StrategyAdapter
from .core.access import AccessController, PauseTransition, Permission
from .core.allocator import AllocationEngine
from .core.audit_log import DecisionAuditLog
from .core.guard import MutationGuard, Transaction
from .core.ledger import ShareLedger
from .core.registry import StrategyRegistry
from .models.decision import Decision, DecisionDraft, DecisionOutcome, DecisionType
from .models.state import Account, AdapterRecord, UserActivitySummary, VaultState
from .notary.notarizer import DecisionNotarizer
from .storage.repository import VaultRepository

logger = get_logger(__name__)


class VaultEngine:
    """
    Pooled-asset yield vault.

    Example:
        >>> engine = VaultEngine(VaultConfig(owner="owner", operators=["agent"]))
        >>> await engine.register_adapter("owner", AaveAdapter())
        >>> await engine.set_active_adapter("agent", "aave-v3")
        >>> shares = await engine.deposit("alice", 1_000)
        >>> await engine.reallocate("agent", "aave-v3", "compound", 500, reason="higher apy")
        >>> metrics = engine.get_vault_metrics()
    """

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        state: Optional[VaultState] = None,
        repository: Optional[VaultRepository] = None,
        clock: Optional[Callable[[], datetime]] = None,
        audit_logger: Optional[VaultAuditLogger] = None,
    ):
        """
        Initialize VaultEngine.

        Args:
            config: Vault configuration (roles, query limits, buckets)
            state: Injected state; a fresh empty vault when omitted
            repository: Optional persistence for state and decisions
            clock: Time source, UTC
            audit_logger: Structured audit channel
        """
        self._config = config or VaultConfig()
        self._state = state if state is not None else VaultState()
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._audit = audit_logger or get_audit_logger()

        # Core components
        self._guard = MutationGuard(self._state)
        self._access = AccessController(
            self._state,
            owner=self._config.owner,
            operators=self._config.operators,
            audit_logger=self._audit,
            clock=self._clock,
        )
        self._audit_log = DecisionAuditLog(
            page_cap=self._config.page_cap,
            max_query_limit=self._config.max_query_limit,
            bucket_seconds=self._config.time_bucket_seconds,
            store=repository,
            clock=self._clock,
            audit_logger=self._audit,
        )
        self._registry = StrategyRegistry(
            self._state, self._access, audit_logger=self._audit, clock=self._clock
        )
        self._allocator = AllocationEngine(
            self._state,
            self._registry,
            self._audit_log,
            self._access,
            audit_logger=self._audit,
        )
        self._ledger = ShareLedger(
            self._state,
            self._allocator,
            self._audit_log,
            clock=self._clock,
            audit_logger=self._audit,
        )

        self._notarizer: Optional[DecisionNotarizer] = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "VaultEngine":
        """
        Build an engine from application config, restoring persisted state.

        Adapters must be registered again after start-up; their restored
        records are re-attached on registration.
        """
        configure_logging(config.log_level)

        repository = None
        if config.vault.db_path:
            repository = VaultRepository(config.vault.db_path)
            repository.initialize()

        engine = cls(config.vault, repository=repository, clock=clock)
        engine.restore()

        if config.notarization.enabled:
            engine.enable_notarization(
                DecisionNotarizer.from_config(config.notarization, engine.audit_log)
            )
        return engine

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> VaultState:
        return self._state

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def access(self) -> AccessController:
        return self._access

    @property
    def registry(self) -> StrategyRegistry:
        return self._registry

    @property
    def audit_log(self) -> DecisionAuditLog:
        return self._audit_log

    @property
    def ledger(self) -> ShareLedger:
        return self._ledger

    @property
    def notarizer(self) -> Optional[DecisionNotarizer]:
        return self._notarizer

    # =========================================================================
    # Mutation plumbing
    # =========================================================================

    @asynccontextmanager
    async def _mutation(self, operation: str, caller: str) -> AsyncIterator[Transaction]:
        try:
            async with self._guard.transaction(operation, on_commit=self._persist) as tx:
                yield tx
        except VaultError as e:
            self._audit.operation_failed(operation, caller, e.kind, e.message)
            raise

    def _persist(self) -> None:
        if self._repository is not None:
            self._repository.save_state(self._state)

    # =========================================================================
    # Ledger operations
    # =========================================================================

    @with_correlation_id
    async def deposit(self, account_id: str, amount: int) -> int:
        """
        Deposit ``amount`` for ``account_id``.

        Returns:
            Shares minted
        """
        async with self._mutation("deposit", account_id):
            return await self._ledger.deposit(account_id, amount)

    @with_correlation_id
    async def withdraw(self, account_id: str, shares: int) -> int:
        """
        Redeem ``shares`` for ``account_id``.

        Returns:
            Amount returned
        """
        async with self._mutation("withdraw", account_id) as tx:
            return await self._ledger.withdraw(account_id, shares, tx)

    @with_correlation_id
    async def emergency_withdraw(self, account_id: str, shares: int) -> int:
        """
        Redeem ``shares`` even while paused, draining adapters if needed.

        Returns:
            Amount returned
        """
        async with self._mutation("emergency_withdraw", account_id) as tx:
            return await self._ledger.emergency_withdraw(account_id, shares, tx)

    def preview_deposit(self, amount: int) -> int:
        return self._ledger.preview_deposit(amount)

    def preview_withdraw(self, shares: int) -> int:
        return self._ledger.preview_withdraw(shares)

    # =========================================================================
    # Allocation
    # =========================================================================

    @with_correlation_id
    async def reallocate(
        self,
        caller: str,
        from_adapter_id: Optional[str],
        to_adapter_id: Optional[str],
        amount: int,
        reason: str = "",
        confidence: Optional[Decimal] = None,
        external_refs: Sequence[str] = (),
    ) -> bool:
        """
        Move capital between adapters; None on either side means idle.

        Returns:
            True on success or no-op, False when funds were parked idle
        """
        async with self._mutation("reallocate", caller) as tx:
            return await self._allocator.reallocate(
                caller,
                from_adapter_id,
                to_adapter_id,
                amount,
                reason=reason,
                confidence=confidence,
                external_refs=external_refs,
                tx=tx,
            )

    @with_correlation_id
    async def log_decision(self, caller: str, draft: DecisionDraft) -> int:
        """
        Append an externally made decision (e.g. an agent's rationale).

        Returns:
            Sequence id
        """
        self._access.require(Permission.DECISION_APPEND, caller)
        if not draft.actor:
            draft.actor = caller
        async with self._guard.hold("log_decision"):
            return self._audit_log.append(draft)

    # =========================================================================
    # Registry
    # =========================================================================

    async def register_adapter(self, caller: str, adapter: StrategyAdapter) -> str:
        async with self._mutation("register_adapter", caller):
            adapter_id = self._registry.register(caller, adapter)
        await self.refresh_adapters(adapter_id)
        return adapter_id

    async def unregister_adapter(self, caller: str, adapter_id: str) -> None:
        async with self._mutation("unregister_adapter", caller):
            self._registry.unregister(caller, adapter_id)

    async def set_active_adapter(self, caller: str, adapter_id: str) -> None:
        async with self._mutation("set_active_adapter", caller):
            await self._registry.set_active(caller, adapter_id)

    async def deactivate_adapter(self, caller: str) -> Optional[str]:
        async with self._mutation("deactivate_adapter", caller):
            return await self._registry.deactivate(caller)

    async def refresh_adapters(self, adapter_id: Optional[str] = None) -> List[AdapterRecord]:
        """Re-read health and reported value of one or all adapters."""
        async with self._guard.hold("refresh_adapters"):
            if adapter_id is not None:
                await self._registry.update_cache(adapter_id)
                return [self._registry.get_record(adapter_id)]
            return await self._registry.refresh()

    def list_adapters(self) -> List[AdapterRecord]:
        return self._registry.list_adapters()

    # =========================================================================
    # Access & emergency control
    # =========================================================================

    async def pause(self, caller: str, reason: str = "") -> PauseTransition:
        async with self._mutation("pause", caller):
            return self._access.pause(caller, reason)

    async def unpause(self, caller: str, reason: str = "") -> PauseTransition:
        async with self._mutation("unpause", caller):
            return self._access.unpause(caller, reason)

    def grant_operator(self, caller: str, identity: str) -> bool:
        return self._access.grant_operator(caller, identity)

    def revoke_operator(self, caller: str, identity: str) -> bool:
        return self._access.revoke_operator(caller, identity)

    def get_pause_history(self) -> List[PauseTransition]:
        return self._access.get_pause_history()

    # =========================================================================
    # Query Methods
    # =========================================================================

    def get_ai_decisions(self, from_id: int, to_id: int) -> Dict[str, Any]:
        """
        Decisions in ``[from_id, to_id)``, bounded by the page cap.

        Returns:
            ``decisions``, ``count`` available in the range and
            ``total_decisions`` in the log
        """
        decisions, count = self._audit_log.get_range(from_id, to_id)
        return {
            "decisions": decisions,
            "count": count,
            "total_decisions": len(self._audit_log),
        }

    def get_decisions_by_type(self, decision_type: DecisionType, limit: int = 50) -> List[Decision]:
        return self._audit_log.get_by_type(decision_type, limit)

    def get_decisions_by_adapter(self, adapter_id: str, limit: int = 50) -> List[Decision]:
        return self._audit_log.get_by_adapter(adapter_id, limit)

    def get_decisions_by_time_range(
        self,
        start: datetime,
        end: datetime,
        limit: int = 50,
    ) -> List[Decision]:
        return self._audit_log.get_by_time_range(start, end, limit)

    def verify_decision(self, sequence_id: int) -> bool:
        return self._audit_log.verify_integrity(sequence_id)

    def get_decision_outcome(self, sequence_id: int) -> Optional[DecisionOutcome]:
        return self._audit_log.get_outcome(sequence_id)

    def get_user_audit_summary(self, account_id: str) -> Dict[str, Any]:
        """Deposit/withdraw totals and timestamps, without scanning the log."""
        summary = self._state.activity.get(account_id) or UserActivitySummary(account_id)
        account = self._state.accounts.get(account_id)
        shares = account.shares if account else 0

        result = summary.to_dict()
        result["shares"] = str(shares)
        result["principal_deposited"] = str(account.principal_deposited if account else 0)
        result["current_value"] = str(self._value_of(shares))
        return result

    def get_vault_metrics(self) -> Dict[str, Any]:
        state = self._state
        share_price = (
            Decimal(state.total_assets) / Decimal(state.total_shares)
            if state.total_shares
            else Decimal("1")
        )
        return {
            "total_assets": str(state.total_assets),
            "total_shares": str(state.total_shares),
            "idle_assets": str(state.idle_assets),
            "allocated_assets": str(state.allocated_assets),
            "reported_assets": str(sum(r.reported_assets for r in state.adapters.values())),
            "share_price": str(share_price),
            "active_adapter_id": state.active_adapter_id,
            "paused": state.paused,
            "status": self._access.status.value,
            "account_count": len(state.accounts),
            "adapter_count": len(state.adapters),
            "decision_count": len(self._audit_log),
            "audit": self._audit_log.get_metrics(),
        }

    def get_balance(self, account_id: str) -> int:
        return self._ledger.balance_of(account_id)

    def get_account(self, account_id: str) -> Optional[Account]:
        return self._ledger.get_account(account_id)

    def check_invariants(self) -> List[str]:
        """Description of every broken invariant; empty when consistent."""
        return self._state.invariant_violations()

    def _value_of(self, shares: int) -> int:
        if shares == 0 or self._state.total_shares == 0:
            return 0
        return shares * self._state.total_assets // self._state.total_shares

    # =========================================================================
    # Persistence and notarization
    # =========================================================================

    def restore(self) -> bool:
        """
        Reload state and decisions from the repository.

        Returns:
            True if persisted state was found
        """
        if self._repository is None:
            return False

        loaded = self._repository.load_state()
        if loaded is not None:
            problems = loaded.invariant_violations()
            if problems:
                raise ValueError(f"Persisted vault state is inconsistent: {problems}")
            self._state.restore(loaded)

        self._audit_log.restore()
        logger.info(
            f"Vault restored: assets={self._state.total_assets} "
            f"shares={self._state.total_shares} decisions={len(self._audit_log)}"
        )
        return loaded is not None

    def enable_notarization(self, notarizer: DecisionNotarizer) -> None:
        self._notarizer = notarizer
        notarizer.attach()

    async def flush_notarizations(self) -> int:
        if self._notarizer is None:
            return 0
        return await self._notarizer.flush()

    async def close(self) -> None:
        if self._notarizer is not None:
            await self._notarizer.flush()
            await self._notarizer.close()
