"""
Decision Audit Log.

Append-only arena of sealed decisions plus secondary indices (by type, by
adapter, by time bucket) that are populated at append time. Queries walk
the indices only, so their cost does not grow with the length of the log.
"""

from bisect import bisect_left, bisect_right
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from yield_vault.core import (
    DecisionNotFoundError,
    InvalidRangeError,
    VaultAuditLogger,
    get_audit_logger,
    get_logger,
)

from ..models.decision import (
    Decision,
    DecisionDraft,
    DecisionOutcome,
    DecisionType,
    OutcomeStatus,
)

logger = get_logger(__name__)

AppendListener = Callable[[Decision], Any]


class DecisionStore(Protocol):
    """Persistence used for write-through and restore."""

    def save_decision(self, decision: Decision, bucket: int) -> None: ...
    def load_decisions(self) -> List[Decision]: ...
    def save_outcome(self, outcome: DecisionOutcome) -> None: ...
    def load_outcomes(self) -> List[DecisionOutcome]: ...
    def save_receipt(self, sequence_id: int, receipt: str) -> None: ...
    def load_receipts(self) -> Dict[int, List[str]]: ...


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DecisionAuditLog:
    """
    Append-only decision history.

    Sequence ids start at 0 and are gapless. Decisions are frozen once
    sealed; outcomes and notarization receipts are kept in side tables that
    the integrity hash does not cover.

    Example:
        >>> log = DecisionAuditLog(page_cap=100)
        >>> seq = log.append(DecisionDraft(DecisionType.REBALANCE, amount=500))
        >>> log.verify_integrity(seq)
        True
        >>> decisions, count = log.get_range(0, 10)
    """

    def __init__(
        self,
        page_cap: int = 100,
        max_query_limit: int = 500,
        bucket_seconds: int = 86_400,
        store: Optional[DecisionStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        audit_logger: Optional[VaultAuditLogger] = None,
    ):
        if page_cap < 1:
            raise ValueError("page_cap must be positive")
        if bucket_seconds < 1:
            raise ValueError("bucket_seconds must be positive")

        self._page_cap = page_cap
        self._max_query_limit = max_query_limit
        self._bucket_seconds = bucket_seconds
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._audit = audit_logger or get_audit_logger()

        # Primary arena, position == sequence_id
        self._arena: List[Decision] = []

        # Secondary indices, each list ascending by sequence_id
        self._by_type: Dict[DecisionType, List[int]] = {t: [] for t in DecisionType}
        self._by_adapter: Dict[str, List[int]] = {}
        self._by_bucket: Dict[int, List[int]] = {}
        self._bucket_keys: List[int] = []

        # Side tables
        self._outcomes: Dict[int, DecisionOutcome] = {}
        self._receipts: Dict[int, List[str]] = {}

        self._listeners: List[AppendListener] = []
        self._last_timestamp: Optional[datetime] = None

    @property
    def page_cap(self) -> int:
        return self._page_cap

    @property
    def next_sequence_id(self) -> int:
        return len(self._arena)

    def __len__(self) -> int:
        return len(self._arena)

    # =========================================================================
    # Append
    # =========================================================================

    def append(self, draft: DecisionDraft) -> int:
        """
        Seal ``draft`` into the log and index it.

        Authorization is enforced by the caller. With a store configured the
        decision is persisted before it becomes visible, so a storage error
        leaves the log unchanged.

        Returns:
            The new sequence id
        """
        sequence_id = len(self._arena)
        timestamp = _as_utc(self._clock())
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            timestamp = self._last_timestamp

        decision = Decision.seal(sequence_id, timestamp, draft)
        bucket = self.bucket_of(timestamp)

        if self._store is not None:
            self._store.save_decision(decision, bucket)

        self._index(decision, bucket)
        self._last_timestamp = timestamp

        self._audit.decision_appended(
            sequence_id,
            decision.decision_type.value,
            decision.amount,
            actor=decision.actor,
            from_adapter_id=decision.from_adapter_id,
            to_adapter_id=decision.to_adapter_id,
        )
        logger.debug(
            f"Decision #{sequence_id} {decision.decision_type.value} "
            f"{decision.from_adapter_id or 'idle'} -> {decision.to_adapter_id or 'idle'} "
            f"amount={decision.amount}"
        )

        self._notify(decision)
        return sequence_id

    def _index(self, decision: Decision, bucket: int) -> None:
        self._arena.append(decision)
        sequence_id = decision.sequence_id

        self._by_type[decision.decision_type].append(sequence_id)
        for adapter_id in decision.adapter_ids:
            self._by_adapter.setdefault(adapter_id, []).append(sequence_id)

        ids = self._by_bucket.get(bucket)
        if ids is None:
            ids = self._by_bucket[bucket] = []
            # Timestamps never go backwards, so new buckets land at the end
            if self._bucket_keys and bucket < self._bucket_keys[-1]:
                self._bucket_keys.insert(bisect_left(self._bucket_keys, bucket), bucket)
            else:
                self._bucket_keys.append(bucket)
        ids.append(sequence_id)

    def bucket_of(self, timestamp: datetime) -> int:
        return int(_as_utc(timestamp).timestamp()) // self._bucket_seconds

    def on_append(self, callback: AppendListener) -> Callable[[], None]:
        """
        Register a callback run after every append.

        Callback errors are logged and never reach the appender.
        """
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, decision: Decision) -> None:
        for callback in self._listeners:
            try:
                callback(decision)
            except Exception as e:
                logger.error(f"Append listener error for decision #{decision.sequence_id}: {e}")

    # =========================================================================
    # Query Methods
    # =========================================================================

    def get(self, sequence_id: int) -> Decision:
        """
        Raises:
            DecisionNotFoundError: Unknown sequence id
        """
        if not isinstance(sequence_id, int) or not 0 <= sequence_id < len(self._arena):
            raise DecisionNotFoundError(
                f"Decision #{sequence_id} does not exist",
                details={"sequence_id": sequence_id, "count": len(self._arena)},
            )
        return self._arena[sequence_id]

    def get_range(self, from_id: int, to_id: int) -> Tuple[List[Decision], int]:
        """
        Decisions with ``from_id <= sequence_id < to_id``.

        Returns:
            (decisions, count actually available in the range)

        Raises:
            InvalidRangeError: Negative bounds, ``from_id > to_id`` or a span
                wider than the page cap
        """
        if from_id < 0 or to_id < 0:
            raise InvalidRangeError(
                "Range bounds must be non-negative",
                details={"from": from_id, "to": to_id},
            )
        if from_id > to_id:
            raise InvalidRangeError(
                f"Range start {from_id} is after end {to_id}",
                details={"from": from_id, "to": to_id},
            )
        if to_id - from_id > self._page_cap:
            raise InvalidRangeError(
                f"Range span {to_id - from_id} exceeds page cap {self._page_cap}",
                details={"from": from_id, "to": to_id, "page_cap": self._page_cap},
            )

        decisions = self._arena[from_id:min(to_id, len(self._arena))]
        return decisions, len(decisions)

    def get_by_type(self, decision_type: DecisionType, limit: int) -> List[Decision]:
        """Newest ``limit`` decisions of ``decision_type``."""
        self._check_limit(limit)
        return self._newest(self._by_type[DecisionType(decision_type)], limit)

    def get_by_adapter(self, adapter_id: str, limit: int) -> List[Decision]:
        """Newest ``limit`` decisions touching ``adapter_id`` on either leg."""
        self._check_limit(limit)
        return self._newest(self._by_adapter.get(adapter_id, []), limit)

    def get_by_time_range(
        self,
        start: datetime,
        end: datetime,
        limit: int,
    ) -> List[Decision]:
        """
        Decisions with ``start <= timestamp <= end``, oldest first.

        Only the buckets overlapping the range are visited.
        """
        self._check_limit(limit)
        start = _as_utc(start)
        end = _as_utc(end)
        if start > end:
            raise InvalidRangeError(
                "Time range start is after end",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )

        first = bisect_left(self._bucket_keys, self.bucket_of(start))
        last = bisect_right(self._bucket_keys, self.bucket_of(end))

        results: List[Decision] = []
        for bucket in self._bucket_keys[first:last]:
            for sequence_id in self._by_bucket[bucket]:
                decision = self._arena[sequence_id]
                if decision.timestamp < start:
                    continue
                if decision.timestamp > end:
                    return results
                results.append(decision)
                if len(results) >= limit:
                    return results
        return results

    def _newest(self, ids: List[int], limit: int) -> List[Decision]:
        return [self._arena[i] for i in reversed(ids[-limit:])]

    def _check_limit(self, limit: int) -> None:
        if not isinstance(limit, int) or limit < 1 or limit > self._max_query_limit:
            raise InvalidRangeError(
                f"limit must be between 1 and {self._max_query_limit}",
                details={"limit": limit},
            )

    def count_by_type(self, decision_type: DecisionType) -> int:
        return len(self._by_type[DecisionType(decision_type)])

    # =========================================================================
    # Integrity
    # =========================================================================

    def verify_integrity(self, sequence_id: int) -> bool:
        """Recompute the hash from the stored fields and compare."""
        decision = self.get(sequence_id)
        return decision.recompute_hash() == decision.integrity_hash

    def verify_all(self) -> List[int]:
        """Sequence ids whose stored fields no longer match their hash."""
        return [d.sequence_id for d in self._arena if d.recompute_hash() != d.integrity_hash]

    # =========================================================================
    # Outcomes and receipts
    # =========================================================================

    def record_outcome(
        self,
        sequence_id: int,
        status: OutcomeStatus,
        detail: str = "",
        executed_amount: int = 0,
    ) -> DecisionOutcome:
        """
        Record what happened when a decision was executed. Write-once.

        Raises:
            DecisionNotFoundError: Unknown sequence id
            ValueError: Outcome already recorded
        """
        self.get(sequence_id)
        if sequence_id in self._outcomes:
            raise ValueError(f"Outcome for decision #{sequence_id} already recorded")

        outcome = DecisionOutcome(
            sequence_id=sequence_id,
            status=OutcomeStatus(status),
            detail=detail,
            executed_amount=executed_amount,
            recorded_at=_as_utc(self._clock()),
        )
        if self._store is not None:
            self._store.save_outcome(outcome)
        self._outcomes[sequence_id] = outcome
        return outcome

    def get_outcome(self, sequence_id: int) -> Optional[DecisionOutcome]:
        self.get(sequence_id)
        return self._outcomes.get(sequence_id)

    def attach_receipt(self, sequence_id: int, receipt: str) -> None:
        """Attach an external notarization receipt id to a decision."""
        self.get(sequence_id)
        receipts = self._receipts.setdefault(sequence_id, [])
        if receipt in receipts:
            return
        if self._store is not None:
            self._store.save_receipt(sequence_id, receipt)
        receipts.append(receipt)

    def get_receipts(self, sequence_id: int) -> List[str]:
        self.get(sequence_id)
        return list(self._receipts.get(sequence_id, []))

    # =========================================================================
    # Restore and metrics
    # =========================================================================

    def restore(self) -> int:
        """
        Reload the arena, outcomes and receipts from the store.

        Decisions are indexed once, in sequence order; stored hashes are kept
        as-is so tampered rows fail verify_integrity().

        Returns:
            Number of decisions loaded
        """
        if self._store is None:
            return 0
        if self._arena:
            raise ValueError("restore() requires an empty audit log")

        decisions = sorted(self._store.load_decisions(), key=lambda d: d.sequence_id)
        for expected, decision in enumerate(decisions):
            if decision.sequence_id != expected:
                raise ValueError(
                    f"Stored decision log has a gap: expected #{expected}, "
                    f"found #{decision.sequence_id}"
                )
            timestamp = _as_utc(decision.timestamp)
            self._index(decision, self.bucket_of(timestamp))
            if self._last_timestamp is None or timestamp > self._last_timestamp:
                self._last_timestamp = timestamp

        for outcome in self._store.load_outcomes():
            if 0 <= outcome.sequence_id < len(self._arena):
                self._outcomes[outcome.sequence_id] = outcome
        for sequence_id, receipts in self._store.load_receipts().items():
            if 0 <= sequence_id < len(self._arena):
                self._receipts[sequence_id] = list(receipts)

        logger.info(f"Restored {len(self._arena)} decisions from storage")
        return len(self._arena)

    def get_metrics(self) -> Dict[str, Any]:
        outcomes = Counter(o.status.value for o in self._outcomes.values())
        notarized = len(self._receipts)
        return {
            "total_decisions": len(self._arena),
            "by_type": {t.value: len(ids) for t, ids in self._by_type.items()},
            "outcomes": {s.value: outcomes.get(s.value, 0) for s in OutcomeStatus},
            "adapters_indexed": len(self._by_adapter),
            "time_buckets": len(self._bucket_keys),
            "notarized": notarized,
            "pending_notarization": len(self._arena) - notarized,
            "last_timestamp": self._last_timestamp.isoformat() if self._last_timestamp else None,
        }
