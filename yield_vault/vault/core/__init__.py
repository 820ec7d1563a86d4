"""Vault core components."""

from .access import (
    AccessController,
    PauseTransition,
    Permission,
    Role,
    ROLE_PERMISSIONS,
    VaultStatus,
)
from .allocator import AllocationEngine, DrainLeg, PullLeg
from .audit_log import DecisionAuditLog, DecisionStore
from .guard import MutationGuard, Transaction
from .ledger import MIN_WITHDRAWAL, ShareLedger
from .registry import StrategyRegistry

__all__ = [
    "AccessController",
    "PauseTransition",
    "Permission",
    "Role",
    "ROLE_PERMISSIONS",
    "VaultStatus",
    "AllocationEngine",
    "DrainLeg",
    "PullLeg",
    "DecisionAuditLog",
    "DecisionStore",
    "MutationGuard",
    "Transaction",
    "MIN_WITHDRAWAL",
    "ShareLedger",
    "StrategyRegistry",
]
