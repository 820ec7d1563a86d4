"""
Mock Notary Sink for testing.

Records submitted batches and fails on demand.
"""

from typing import Dict, List

from yield_vault.vault.models import Decision
from yield_vault.vault.notary import NotaryError, NotarySink


class MockNotarySink(NotarySink):
    """
    Notary sink that keeps batches in memory.

    Example:
        >>> sink = MockNotarySink(fail_times=2)
        >>> await sink.submit(batch)  # raises NotaryError twice, then succeeds
    """

    def __init__(self, fail_times: int = 0, drop_ids: tuple = ()):
        self.fail_times = fail_times
        self.drop_ids = set(drop_ids)
        self.batches: List[List[int]] = []
        self.attempts = 0
        self.closed = False

    async def submit(self, decisions: List[Decision]) -> Dict[int, str]:
        self.attempts += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise NotaryError("notary unavailable")

        self.batches.append([d.sequence_id for d in decisions])
        return {
            d.sequence_id: f"tx-{d.sequence_id}"
            for d in decisions
            if d.sequence_id not in self.drop_ids
        }

    async def close(self) -> None:
        self.closed = True
