"""
Decision Record Models.

An allocation decision is immutable once appended to the audit log. The
integrity hash covers every field except the hash itself; outcomes and
notarization receipts live beside the decision, not inside it.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class DecisionType(Enum):
    """Category of an allocation decision."""

    DEPOSIT_ALLOCATE = "deposit_allocate"
    WITHDRAW_DEALLOCATE = "withdraw_deallocate"
    REBALANCE = "rebalance"
    EMERGENCY_WITHDRAW = "emergency_withdraw"


class OutcomeStatus(Enum):
    """What happened when a recorded decision was executed."""

    EXECUTED = "executed"        # Both legs completed
    PARKED_IDLE = "parked_idle"  # Source pulled, destination failed, funds idle
    REJECTED = "rejected"        # Refused before moving funds
    NOOP = "noop"                # Same adapter or zero amount


@dataclass
class DecisionDraft:
    """
    Caller-supplied content of a decision, before sequencing and hashing.

    Attributes:
        decision_type: Decision category
        amount: Intended amount
        from_adapter_id: Source leg (None = idle balance)
        to_adapter_id: Destination leg (None = idle balance)
        reason: Free-text rationale
        actor: Who made the decision (operator, agent or depositor)
        confidence: Optional agent confidence in [0, 1]
        external_refs: Opaque references supplied at append time
    """

    decision_type: DecisionType
    amount: int = 0
    from_adapter_id: Optional[str] = None
    to_adapter_id: Optional[str] = None
    reason: str = ""
    actor: str = ""
    confidence: Optional[Decimal] = None
    external_refs: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if isinstance(self.decision_type, str):
            self.decision_type = DecisionType(self.decision_type)
        if self.confidence is not None and not isinstance(self.confidence, Decimal):
            self.confidence = Decimal(str(self.confidence))
        if self.confidence is not None and not (Decimal("0") <= self.confidence <= Decimal("1")):
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        self.external_refs = tuple(self.external_refs)


def canonical_payload(
    sequence_id: int,
    timestamp: datetime,
    draft: DecisionDraft,
) -> str:
    """
    Canonical serialization hashed into ``integrity_hash``.

    Sorted keys and compact separators, amounts and confidence as strings.
    """
    payload = {
        "sequence_id": sequence_id,
        "timestamp": timestamp.isoformat(),
        "type": draft.decision_type.value,
        "from_adapter_id": draft.from_adapter_id,
        "to_adapter_id": draft.to_adapter_id,
        "amount": str(draft.amount),
        "reason": draft.reason,
        "actor": draft.actor,
        "confidence": str(draft.confidence) if draft.confidence is not None else None,
        "external_refs": list(draft.external_refs),
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_integrity_hash(
    sequence_id: int,
    timestamp: datetime,
    draft: DecisionDraft,
) -> str:
    return hashlib.sha256(
        canonical_payload(sequence_id, timestamp, draft).encode("utf-8")
    ).hexdigest()


@dataclass(frozen=True)
class Decision:
    """Immutable audit record of one allocation action."""

    sequence_id: int
    timestamp: datetime
    decision_type: DecisionType
    amount: int
    from_adapter_id: Optional[str]
    to_adapter_id: Optional[str]
    reason: str
    actor: str
    confidence: Optional[Decimal]
    external_refs: Tuple[str, ...]
    integrity_hash: str

    @classmethod
    def seal(cls, sequence_id: int, timestamp: datetime, draft: DecisionDraft) -> "Decision":
        """Sequence and hash a draft into an immutable decision."""
        return cls(
            sequence_id=sequence_id,
            timestamp=timestamp,
            decision_type=draft.decision_type,
            amount=draft.amount,
            from_adapter_id=draft.from_adapter_id,
            to_adapter_id=draft.to_adapter_id,
            reason=draft.reason,
            actor=draft.actor,
            confidence=draft.confidence,
            external_refs=tuple(draft.external_refs),
            integrity_hash=compute_integrity_hash(sequence_id, timestamp, draft),
        )

    def as_draft(self) -> DecisionDraft:
        return DecisionDraft(
            decision_type=self.decision_type,
            amount=self.amount,
            from_adapter_id=self.from_adapter_id,
            to_adapter_id=self.to_adapter_id,
            reason=self.reason,
            actor=self.actor,
            confidence=self.confidence,
            external_refs=self.external_refs,
        )

    def recompute_hash(self) -> str:
        return compute_integrity_hash(self.sequence_id, self.timestamp, self.as_draft())

    @property
    def adapter_ids(self) -> Tuple[str, ...]:
        """Distinct adapter ids touched by either leg."""
        ids = []
        for adapter_id in (self.from_adapter_id, self.to_adapter_id):
            if adapter_id is not None and adapter_id not in ids:
                ids.append(adapter_id)
        return tuple(ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_id": self.sequence_id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.decision_type.value,
            "from_adapter_id": self.from_adapter_id,
            "to_adapter_id": self.to_adapter_id,
            "amount": str(self.amount),
            "reason": self.reason,
            "actor": self.actor,
            "confidence": str(self.confidence) if self.confidence is not None else None,
            "external_refs": list(self.external_refs),
            "integrity_hash": self.integrity_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Decision":
        """Rebuild a stored decision without re-hashing (tampering stays detectable)."""
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        confidence = data.get("confidence")
        return cls(
            sequence_id=int(data["sequence_id"]),
            timestamp=timestamp,
            decision_type=DecisionType(data["type"]),
            amount=int(data.get("amount", 0)),
            from_adapter_id=data.get("from_adapter_id"),
            to_adapter_id=data.get("to_adapter_id"),
            reason=data.get("reason", ""),
            actor=data.get("actor", ""),
            confidence=Decimal(str(confidence)) if confidence is not None else None,
            external_refs=tuple(data.get("external_refs") or ()),
            integrity_hash=data["integrity_hash"],
        )


@dataclass
class DecisionOutcome:
    """Execution outcome of a decision, recorded once."""

    sequence_id: int
    status: OutcomeStatus
    detail: str = ""
    executed_amount: int = 0
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if isinstance(self.status, str):
            self.status = OutcomeStatus(self.status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_id": self.sequence_id,
            "status": self.status.value,
            "detail": self.detail,
            "executed_amount": str(self.executed_amount),
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecisionOutcome":
        recorded_at = data.get("recorded_at")
        if isinstance(recorded_at, str):
            recorded_at = datetime.fromisoformat(recorded_at)
        return cls(
            sequence_id=int(data["sequence_id"]),
            status=OutcomeStatus(data["status"]),
            detail=data.get("detail", ""),
            executed_amount=int(data.get("executed_amount", 0)),
            recorded_at=recorded_at or datetime.now(timezone.utc),
        )
