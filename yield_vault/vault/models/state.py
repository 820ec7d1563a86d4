"""
Vault State Models.

The injected state struct every vault operation works on: the VaultState
singleton, per-account share balances, adapter records and the per-account
activity summary.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


@dataclass
class Account:
    """
    Share balance of one depositor.

    Created on first deposit and never deleted; ``shares`` may reach zero.

    Attributes:
        account_id: Depositor identity
        shares: Current share balance
        principal_deposited: Cumulative deposited value (monotonic)
        first_deposit_time: Time of the first deposit
        last_activity_time: Time of the last deposit or withdrawal
    """

    account_id: str
    shares: int = 0
    principal_deposited: int = 0
    first_deposit_time: Optional[datetime] = None
    last_activity_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "shares": str(self.shares),
            "principal_deposited": str(self.principal_deposited),
            "first_deposit_time": (
                self.first_deposit_time.isoformat() if self.first_deposit_time else None
            ),
            "last_activity_time": (
                self.last_activity_time.isoformat() if self.last_activity_time else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        return cls(
            account_id=data["account_id"],
            shares=int(data.get("shares", 0)),
            principal_deposited=int(data.get("principal_deposited", 0)),
            first_deposit_time=_parse_ts(data.get("first_deposit_time")),
            last_activity_time=_parse_ts(data.get("last_activity_time")),
        )


@dataclass
class UserActivitySummary:
    """
    Per-account activity totals.

    Maintained by the same operation that mutates the ledger so that
    summary queries never scan the decision log.
    """

    account_id: str
    total_deposited: int = 0
    total_withdrawn: int = 0
    deposit_count: int = 0
    withdrawal_count: int = 0
    emergency_withdrawal_count: int = 0
    first_activity_time: Optional[datetime] = None
    last_activity_time: Optional[datetime] = None

    @property
    def net_deposited(self) -> int:
        """Deposited minus withdrawn; negative once yield has been taken out."""
        return self.total_deposited - self.total_withdrawn

    def touch(self, now: datetime) -> None:
        if self.first_activity_time is None:
            self.first_activity_time = now
        self.last_activity_time = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "total_deposited": str(self.total_deposited),
            "total_withdrawn": str(self.total_withdrawn),
            "net_deposited": str(self.net_deposited),
            "deposit_count": self.deposit_count,
            "withdrawal_count": self.withdrawal_count,
            "emergency_withdrawal_count": self.emergency_withdrawal_count,
            "first_activity_time": (
                self.first_activity_time.isoformat() if self.first_activity_time else None
            ),
            "last_activity_time": (
                self.last_activity_time.isoformat() if self.last_activity_time else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserActivitySummary":
        return cls(
            account_id=data["account_id"],
            total_deposited=int(data.get("total_deposited", 0)),
            total_withdrawn=int(data.get("total_withdrawn", 0)),
            deposit_count=int(data.get("deposit_count", 0)),
            withdrawal_count=int(data.get("withdrawal_count", 0)),
            emergency_withdrawal_count=int(data.get("emergency_withdrawal_count", 0)),
            first_activity_time=_parse_ts(data.get("first_activity_time")),
            last_activity_time=_parse_ts(data.get("last_activity_time")),
        )


@dataclass
class AdapterRecord:
    """
    Registry record for one strategy adapter.

    Attributes:
        adapter_id: Adapter identity
        label: Human-readable name
        is_active: Whether new capital is placed here
        is_healthy: Last observed health
        reported_assets: Last value reported by the adapter (includes yield)
        allocated: Book value placed by the vault and not yet pulled back
        registered_at: Registration time
        last_checked: Last time health/value were refreshed
    """

    adapter_id: str
    label: str = ""
    is_active: bool = False
    is_healthy: bool = True
    reported_assets: int = 0
    allocated: int = 0
    registered_at: datetime = field(default_factory=_utcnow)
    last_checked: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "adapter_id": self.adapter_id,
            "label": self.label,
            "is_active": self.is_active,
            "is_healthy": self.is_healthy,
            "reported_assets": str(self.reported_assets),
            "allocated": str(self.allocated),
            "registered_at": self.registered_at.isoformat(),
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AdapterRecord":
        return cls(
            adapter_id=data["adapter_id"],
            label=data.get("label", ""),
            is_active=bool(data.get("is_active", False)),
            is_healthy=bool(data.get("is_healthy", True)),
            reported_assets=int(data.get("reported_assets", 0)),
            allocated=int(data.get("allocated", 0)),
            registered_at=_parse_ts(data.get("registered_at")) or _utcnow(),
            last_checked=_parse_ts(data.get("last_checked")),
        )


@dataclass
class VaultState:
    """
    Vault state singleton, passed explicitly to every component.

    Invariants after every mutating operation:
    - ``sum(account.shares) == total_shares``
    - ``total_assets == idle_assets + sum(record.allocated)``
    - ``total_shares == 0`` iff ``total_assets == 0``
    """

    total_assets: int = 0
    total_shares: int = 0
    idle_assets: int = 0
    active_adapter_id: Optional[str] = None
    paused: bool = False
    accounts: Dict[str, Account] = field(default_factory=dict)
    activity: Dict[str, UserActivitySummary] = field(default_factory=dict)
    adapters: Dict[str, AdapterRecord] = field(default_factory=dict)

    @property
    def allocated_assets(self) -> int:
        return sum(record.allocated for record in self.adapters.values())

    def get_or_create_account(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if account is None:
            account = Account(account_id=account_id)
            self.accounts[account_id] = account
        return account

    def get_or_create_activity(self, account_id: str) -> UserActivitySummary:
        summary = self.activity.get(account_id)
        if summary is None:
            summary = UserActivitySummary(account_id=account_id)
            self.activity[account_id] = summary
        return summary

    def write_off_shares(self) -> int:
        """
        Zero every share balance once the vault holds no value at all.

        Returns:
            Number of shares written off
        """
        written_off = self.total_shares
        for account in self.accounts.values():
            account.shares = 0
        self.total_shares = 0
        return written_off

    def snapshot(self) -> "VaultState":
        """Deep copy used as the rollback point of a mutating operation."""
        return copy.deepcopy(self)

    def restore(self, snapshot: "VaultState") -> None:
        """Restore every field from a snapshot taken with snapshot()."""
        restored = copy.deepcopy(snapshot)
        self.total_assets = restored.total_assets
        self.total_shares = restored.total_shares
        self.idle_assets = restored.idle_assets
        self.active_adapter_id = restored.active_adapter_id
        self.paused = restored.paused
        self.accounts = restored.accounts
        self.activity = restored.activity
        self.adapters = restored.adapters

    def invariant_violations(self) -> list[str]:
        """Return a description of every broken invariant (empty when consistent)."""
        problems = []

        share_sum = sum(account.shares for account in self.accounts.values())
        if share_sum != self.total_shares:
            problems.append(
                f"sum of account shares {share_sum} != total_shares {self.total_shares}"
            )

        book = self.idle_assets + self.allocated_assets
        if book != self.total_assets:
            problems.append(
                f"idle + allocated {book} != total_assets {self.total_assets}"
            )

        if (self.total_shares == 0) != (self.total_assets == 0):
            problems.append(
                f"empty-vault mismatch: total_shares={self.total_shares} "
                f"total_assets={self.total_assets}"
            )

        if self.active_adapter_id is not None:
            record = self.adapters.get(self.active_adapter_id)
            if record is None or not record.is_active:
                problems.append(f"active adapter {self.active_adapter_id} has no active record")

        active = [r.adapter_id for r in self.adapters.values() if r.is_active]
        if len(active) > 1:
            problems.append(f"more than one active adapter: {active}")

        return problems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_assets": str(self.total_assets),
            "total_shares": str(self.total_shares),
            "idle_assets": str(self.idle_assets),
            "allocated_assets": str(self.allocated_assets),
            "active_adapter_id": self.active_adapter_id,
            "paused": self.paused,
        }
