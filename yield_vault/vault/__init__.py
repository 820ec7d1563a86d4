"""
Vault Module.

Share ledger, strategy registry, allocation engine and decision audit log
behind the VaultEngine facade.

Includes:
- VaultEngine: Facade exposing every vault operation
- StrategyAdapter: Capability contract for yield sources
- DecisionAuditLog: Append-only indexed decision history
- VaultRepository: SQLite persistence
"""

from .adapters.base import StrategyAdapter
from .core.access import AccessController, PauseTransition, Permission, Role, VaultStatus
from .core.allocator import AllocationEngine
from .core.audit_log import DecisionAuditLog
from .core.guard import MutationGuard
from .core.ledger import ShareLedger
from .core.registry import StrategyRegistry
from .manager import VaultEngine
from .models.decision import (
    Decision,
    DecisionDraft,
    DecisionOutcome,
    DecisionType,
    OutcomeStatus,
)
from .models.state import Account, AdapterRecord, UserActivitySummary, VaultState
from .notary.notarizer import DecisionNotarizer, FileNotarySink, HttpNotarySink, NotarySink
from .storage.repository import VaultRepository

__all__ = [
    # Engine
    "VaultEngine",
    # Core
    "ShareLedger",
    "StrategyRegistry",
    "AllocationEngine",
    "DecisionAuditLog",
    "AccessController",
    "MutationGuard",
    "Permission",
    "Role",
    "VaultStatus",
    "PauseTransition",
    # Adapters
    "StrategyAdapter",
    # Models
    "VaultState",
    "Account",
    "AdapterRecord",
    "UserActivitySummary",
    "Decision",
    "DecisionDraft",
    "DecisionOutcome",
    "DecisionType",
    "OutcomeStatus",
    # Notary
    "DecisionNotarizer",
    "NotarySink",
    "FileNotarySink",
    "HttpNotarySink",
    # Storage
    "VaultRepository",
]
