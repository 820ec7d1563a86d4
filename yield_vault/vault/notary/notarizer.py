"""
Decision Notarizer.

Best-effort side channel that submits appended decisions to an external
notary (a JSON lines file or an HTTP endpoint) and attaches the returned
receipt ids to the audit log. Nothing here raises into ``append``: failed
batches stay pending for the next flush.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from yield_vault.config.models import NotarizationConfig
from yield_vault.core import EventType, get_audit_logger, get_logger

from ..core.audit_log import DecisionAuditLog
from ..models.decision import Decision

logger = get_logger(__name__)


class NotaryError(Exception):
    """Notary sink rejected or could not accept a batch."""


class NotarySink(ABC):
    """Destination for notarized decisions."""

    @abstractmethod
    async def submit(self, decisions: List[Decision]) -> Dict[int, str]:
        """
        Submit a batch.

        Returns:
            Receipt id per sequence id; missing ids count as not notarized
        """

    async def close(self) -> None:
        pass


class FileNotarySink(NotarySink):
    """Appends each decision as one JSON line; the receipt is its line key."""

    def __init__(self, path: str | Path = "data/notary/decisions.jsonl"):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    async def submit(self, decisions: List[Decision]) -> Dict[int, str]:
        receipts: Dict[int, str] = {}
        lines = []
        for decision in decisions:
            receipt = f"file:{decision.sequence_id}:{decision.integrity_hash[:16]}"
            lines.append(json.dumps({"receipt": receipt, **decision.to_dict()}, ensure_ascii=False))
            receipts[decision.sequence_id] = receipt

        with open(self._path, "a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")

        logger.debug(f"Wrote {len(decisions)} decisions to {self._path}")
        return receipts


class HttpNotarySink(NotarySink):
    """
    POSTs a batch to a notary endpoint.

    Expected response: ``{"receipts": {"<sequence_id>": "<receipt id>", ...}}``.

    Example:
        >>> sink = HttpNotarySink("https://notary.example/api/decisions", api_token="...")
        >>> receipts = await sink.submit(decisions)
        >>> await sink.close()
    """

    def __init__(
        self,
        url: str,
        api_token: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self._url = url
        self._api_token = api_token
        self._timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self._api_token:
                headers["Authorization"] = f"Bearer {self._api_token}"
            self._session = aiohttp.ClientSession(headers=headers)
        return self._session

    async def submit(self, decisions: List[Decision]) -> Dict[int, str]:
        session = await self._get_session()
        payload = {"decisions": [d.to_dict() for d in decisions]}

        try:
            async with session.post(
                self._url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                if response.status not in (200, 201):
                    error_text = await response.text()
                    raise NotaryError(f"Notary returned {response.status}: {error_text[:200]}")
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NotaryError(f"Notary request failed: {e}") from e

        return self._parse_receipts(data)

    @staticmethod
    def _parse_receipts(data: Any) -> Dict[int, str]:
        receipts = data.get("receipts") if isinstance(data, dict) else None
        if not isinstance(receipts, dict):
            raise NotaryError("Notary response has no receipts mapping")
        return {int(seq): str(receipt) for seq, receipt in receipts.items()}

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None


class DecisionNotarizer:
    """
    Queues appended decisions and notarizes them in batches.

    Example:
        >>> notarizer = DecisionNotarizer(audit_log, FileNotarySink("notary.jsonl"))
        >>> notarizer.attach()
        >>> ...  # decisions appended
        >>> await notarizer.flush()
    """

    def __init__(
        self,
        audit_log: DecisionAuditLog,
        sink: NotarySink,
        batch_size: int = 20,
        retry_count: int = 3,
        retry_interval: float = 1.0,
    ):
        """
        Initialize notarizer.

        Args:
            audit_log: Log to read decisions from and attach receipts to
            sink: Notary destination
            batch_size: Decisions per submission
            retry_count: Attempts per batch before leaving it pending
            retry_interval: Seconds between attempts
        """
        self._audit_log = audit_log
        self._sink = sink
        self._batch_size = max(1, batch_size)
        self._retry_count = max(1, retry_count)
        self._retry_interval = retry_interval
        self._pending: List[Decision] = []
        self._unsubscribe = None
        self._flush_lock = asyncio.Lock()
        self._audit = get_audit_logger()

        self._stats = {"submitted": 0, "notarized": 0, "failed_batches": 0}

    @classmethod
    def from_config(
        cls,
        config: NotarizationConfig,
        audit_log: DecisionAuditLog,
    ) -> "DecisionNotarizer":
        if config.sink == "http":
            sink: NotarySink = HttpNotarySink(config.url or "", api_token=config.api_token)
        else:
            sink = FileNotarySink(config.path)
        return cls(
            audit_log,
            sink,
            batch_size=config.batch_size,
            retry_count=config.retry_count,
            retry_interval=config.retry_interval,
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def attach(self) -> None:
        """Queue every decision appended from now on."""
        if self._unsubscribe is None:
            self._unsubscribe = self._audit_log.on_append(self.enqueue)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def enqueue(self, decision: Decision) -> None:
        self._pending.append(decision)

    async def flush(self) -> int:
        """
        Submit everything pending.

        Returns:
            Number of decisions notarized in this flush
        """
        async with self._flush_lock:
            queue, self._pending = self._pending, []
            notarized = 0
            still_pending: List[Decision] = []

            for start in range(0, len(queue), self._batch_size):
                batch = queue[start:start + self._batch_size]
                receipts = await self._submit_with_retry(batch)

                for decision in batch:
                    receipt = receipts.get(decision.sequence_id)
                    if receipt is None:
                        still_pending.append(decision)
                        continue
                    self._audit_log.attach_receipt(decision.sequence_id, receipt)
                    self._audit.info(
                        EventType.DECISION_NOTARIZED,
                        f"Decision #{decision.sequence_id} notarized: {receipt}",
                        receipt=receipt,
                    )
                    notarized += 1

            # Decisions appended during the flush keep their place after the retries
            self._pending = still_pending + self._pending
            self._stats["notarized"] += notarized
            if still_pending:
                logger.warning(f"{len(still_pending)} decisions left pending notarization")
            return notarized

    async def _submit_with_retry(self, batch: List[Decision]) -> Dict[int, str]:
        self._stats["submitted"] += len(batch)
        for attempt in range(self._retry_count):
            try:
                return await self._sink.submit(batch)
            except Exception as e:
                logger.error(
                    f"Notary submission of {len(batch)} decisions failed: {e} "
                    f"(attempt {attempt + 1}/{self._retry_count})"
                )
            if attempt < self._retry_count - 1:
                await asyncio.sleep(self._retry_interval)

        self._stats["failed_batches"] += 1
        return {}

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "pending": len(self._pending)}

    async def close(self) -> None:
        self.detach()
        await self._sink.close()
