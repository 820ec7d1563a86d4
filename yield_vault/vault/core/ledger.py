"""
Share Ledger.

Converts deposited value into shares and back. Source of truth for
``total_assets``, ``total_shares`` and per-account balances; keeps the
per-account activity summary in step with every mutation.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from yield_vault.core import (
    EventType,
    InsufficientBalanceError,
    InsufficientSharesError,
    PausedError,
    VaultAuditLogger,
    ZeroAmountError,
    checked_add,
    checked_sub,
    get_audit_logger,
    get_logger,
    mul_div_floor,
    require_positive,
)

from ..models.decision import DecisionDraft, DecisionType
from ..models.state import Account, VaultState
from .allocator import AllocationEngine
from .audit_log import DecisionAuditLog
from .guard import Transaction

logger = get_logger(__name__)

# Paid out when a positive share count rounds down to nothing
MIN_WITHDRAWAL = 1


class ShareLedger:
    """
    Share accounting.

    Mint: ``shares = amount`` while the vault is empty, otherwise
    ``floor(amount * total_shares / total_assets)``.
    Burn: ``amount = floor(shares * total_assets / total_shares)``, at least 1.

    Example:
        >>> ledger = ShareLedger(state, allocator, audit_log)
        >>> await ledger.deposit("alice", 1_000)
        1000
    """

    def __init__(
        self,
        state: VaultState,
        allocator: AllocationEngine,
        audit_log: DecisionAuditLog,
        clock: Optional[Callable[[], datetime]] = None,
        audit_logger: Optional[VaultAuditLogger] = None,
    ):
        self._state = state
        self._allocator = allocator
        self._audit_log = audit_log
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._audit = audit_logger or get_audit_logger()

    # =========================================================================
    # Conversion
    # =========================================================================

    def preview_deposit(self, amount: int) -> int:
        """Shares ``amount`` would mint right now."""
        require_positive(amount)
        if self._state.total_shares == 0 or self._state.total_assets == 0:
            return amount
        return mul_div_floor(amount, self._state.total_shares, self._state.total_assets)

    def preview_withdraw(self, shares: int) -> int:
        """
        Value ``shares`` would redeem right now.

        Raises:
            InsufficientSharesError: More shares than exist
            InsufficientBalanceError: The minimum payout would empty the
                vault while other shares remain
        """
        require_positive(shares, "shares")
        total_shares = self._state.total_shares
        total_assets = self._state.total_assets
        if shares > total_shares:
            raise InsufficientSharesError(
                f"Only {total_shares} shares outstanding",
                details={"shares": shares, "total_shares": total_shares},
            )

        amount = mul_div_floor(shares, total_assets, total_shares)
        if amount == 0:
            amount = MIN_WITHDRAWAL
        if shares < total_shares and amount >= total_assets:
            raise InsufficientBalanceError(
                "Redeeming would empty the vault while shares remain outstanding",
                details={"shares": shares, "amount": amount, "total_assets": total_assets},
            )
        return amount

    def get_account(self, account_id: str) -> Optional[Account]:
        return self._state.accounts.get(account_id)

    def balance_of(self, account_id: str) -> int:
        account = self._state.accounts.get(account_id)
        return account.shares if account else 0

    # =========================================================================
    # Mutations
    # =========================================================================

    async def deposit(self, account_id: str, amount: int) -> int:
        """
        Mint shares for ``amount`` and place it into the active adapter.

        State is fully updated before the adapter is called. The caller's
        transaction restores it if placement fails.

        Returns:
            Shares minted

        Raises:
            ZeroAmountError: ``amount`` is zero, or too small to mint a share
            PausedError: Vault is paused
            AdapterNotHealthyError, AdapterFailureError: Placement failed
        """
        require_positive(amount)
        self._require_running("deposit")

        shares = self.preview_deposit(amount)
        if shares == 0:
            raise ZeroAmountError(
                f"Deposit of {amount} is too small to mint a share",
                details={"amount": amount},
            )

        now = self._clock()
        state = self._state
        account = state.get_or_create_account(account_id)

        state.total_assets = checked_add(state.total_assets, amount)
        state.total_shares = checked_add(state.total_shares, shares)
        state.idle_assets = checked_add(state.idle_assets, amount)
        account.shares = checked_add(account.shares, shares)
        account.principal_deposited = checked_add(account.principal_deposited, amount)
        if account.first_deposit_time is None:
            account.first_deposit_time = now
        account.last_activity_time = now

        summary = state.get_or_create_activity(account_id)
        summary.total_deposited = checked_add(summary.total_deposited, amount)
        summary.deposit_count += 1
        summary.touch(now)

        placed_into = await self._allocator.place_idle(amount)
        if placed_into is not None:
            self._audit_log.append(
                DecisionDraft(
                    decision_type=DecisionType.DEPOSIT_ALLOCATE,
                    amount=amount,
                    to_adapter_id=placed_into,
                    reason=f"deposit by {account_id} placed into active adapter",
                    actor=account_id,
                )
            )

        self._audit.ledger_operation(
            EventType.DEPOSIT, account_id, amount, shares, placed_into=placed_into
        )
        return shares

    async def withdraw(
        self,
        account_id: str,
        shares: int,
        tx: Optional[Transaction] = None,
    ) -> int:
        """
        Burn ``shares`` and pay out their value.

        Idle value is used first; the rest is pulled from adapters before any
        share is burned. Pulled value that cannot complete the payout stays
        idle and the call fails with shares untouched.

        Returns:
            Amount paid out

        Raises:
            ZeroAmountError: ``shares`` is zero
            PausedError: Vault is paused
            InsufficientSharesError: Account holds fewer shares
            InsufficientBalanceError: Adapters returned too little
            AdapterFailureError: A pull raised
        """
        require_positive(shares, "shares")
        self._require_running("withdraw")
        account = self._require_shares(account_id, shares)

        amount = self.preview_withdraw(shares)
        legs = await self._allocator.pull_for_withdrawal(amount, tx)
        for leg in legs:
            if leg.returned:
                self._audit_log.append(
                    DecisionDraft(
                        decision_type=DecisionType.WITHDRAW_DEALLOCATE,
                        amount=leg.returned,
                        from_adapter_id=leg.adapter_id,
                        reason=(
                            f"withdrawal by {account_id}: requested {leg.requested}, "
                            f"returned {leg.returned}"
                        ),
                        actor=account_id,
                    )
                )

        self._require_idle(amount, "withdraw")
        self._burn(account, shares, amount, emergency=False)

        self._audit.ledger_operation(EventType.WITHDRAW, account_id, amount, shares)
        return amount

    async def emergency_withdraw(
        self,
        account_id: str,
        shares: int,
        tx: Optional[Transaction] = None,
    ) -> int:
        """
        Redeem ``shares`` regardless of pause state.

        The payout is fixed at the ratio before any drain. Adapters are
        drained without a health check until idle covers it.

        Returns:
            Amount paid out
        """
        require_positive(shares, "shares")
        account = self._require_shares(account_id, shares)

        amount = self.preview_withdraw(shares)
        legs = await self._allocator.emergency_egress(amount, tx)

        for leg in legs:
            self._audit_log.append(
                DecisionDraft(
                    decision_type=DecisionType.EMERGENCY_WITHDRAW,
                    amount=leg.drained,
                    from_adapter_id=leg.adapter_id,
                    reason=(
                        f"emergency drain for {account_id}: drained {leg.drained} "
                        f"against book value {leg.book_value}"
                    ),
                    actor=account_id,
                )
            )
        if not legs:
            self._audit_log.append(
                DecisionDraft(
                    decision_type=DecisionType.EMERGENCY_WITHDRAW,
                    amount=amount,
                    reason=f"emergency withdrawal by {account_id} served from idle",
                    actor=account_id,
                )
            )

        self._require_idle(amount, "emergency_withdraw")
        if shares < self._state.total_shares and amount >= self._state.total_assets:
            raise InsufficientBalanceError(
                "Drain losses leave too little to redeem while shares remain outstanding",
                details={"amount": amount, "total_assets": self._state.total_assets},
            )
        self._burn(account, shares, amount, emergency=True)

        self._audit.ledger_operation(
            EventType.EMERGENCY_WITHDRAW,
            account_id,
            amount,
            shares,
            drained=[leg.adapter_id for leg in legs],
        )
        logger.warning(f"Emergency withdrawal: {account_id} redeemed {shares} shares for {amount}")
        return amount

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_running(self, operation: str) -> None:
        if self._state.paused:
            raise PausedError(
                f"{operation} is not allowed while the vault is paused",
                details={"operation": operation},
            )

    def _require_shares(self, account_id: str, shares: int) -> Account:
        account = self._state.accounts.get(account_id)
        held = account.shares if account else 0
        if account is None or shares > held:
            raise InsufficientSharesError(
                f"{account_id} holds {held} shares, requested {shares}",
                details={"account_id": account_id, "held": held, "requested": shares},
            )
        return account

    def _require_idle(self, amount: int, operation: str) -> None:
        idle = self._state.idle_assets
        if idle < amount:
            raise InsufficientBalanceError(
                f"{operation}: only {idle} available, {amount} required",
                details={"available": idle, "required": amount},
            )

    def _burn(self, account: Account, shares: int, amount: int, emergency: bool) -> None:
        now = self._clock()
        state = self._state

        account.shares = checked_sub(account.shares, shares)
        account.last_activity_time = now
        state.total_shares = checked_sub(state.total_shares, shares)
        state.total_assets = checked_sub(state.total_assets, amount)
        state.idle_assets = checked_sub(state.idle_assets, amount)

        summary = state.get_or_create_activity(account.account_id)
        summary.total_withdrawn = checked_add(summary.total_withdrawn, amount)
        if emergency:
            summary.emergency_withdrawal_count += 1
        else:
            summary.withdrawal_count += 1
        summary.touch(now)
