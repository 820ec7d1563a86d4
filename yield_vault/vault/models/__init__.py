"""Vault data models."""

from .decision import (
    Decision,
    DecisionDraft,
    DecisionOutcome,
    DecisionType,
    OutcomeStatus,
    compute_integrity_hash,
)
from .state import Account, AdapterRecord, UserActivitySummary, VaultState

__all__ = [
    "VaultState",
    "Account",
    "AdapterRecord",
    "UserActivitySummary",
    "Decision",
    "DecisionDraft",
    "DecisionOutcome",
    "DecisionType",
    "OutcomeStatus",
    "compute_integrity_hash",
]
