"""
Decision Notarizer Unit Tests.

Tests for batching, retries, pending decisions and the notary sinks.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from yield_vault.config.models import NotarizationConfig
from yield_vault.vault import DecisionNotarizer, FileNotarySink, HttpNotarySink
from yield_vault.vault.models import DecisionDraft, DecisionType
from yield_vault.vault.notary import NotaryError
from tests.mocks import MockNotarySink

OWNER = "owner"
AGENT = "agent"


def append_many(audit_log, count):
    return [
        audit_log.append(DecisionDraft(DecisionType.REBALANCE, amount=i, actor=AGENT))
        for i in range(count)
    ]


@pytest.fixture
def sink():
    return MockNotarySink()


@pytest.fixture
def notarizer(audit_log, sink):
    n = DecisionNotarizer(audit_log, sink, batch_size=2, retry_count=3, retry_interval=0)
    n.attach()
    return n


class TestQueueing:
    """Test decisions are queued as they are appended."""

    def test_attach_queues_appends(self, audit_log, notarizer):
        append_many(audit_log, 3)
        assert notarizer.pending_count == 3

    def test_detach_stops_queueing(self, audit_log, notarizer):
        notarizer.detach()
        append_many(audit_log, 2)
        assert notarizer.pending_count == 0

    def test_attach_is_idempotent(self, audit_log, notarizer):
        notarizer.attach()
        append_many(audit_log, 1)
        assert notarizer.pending_count == 1


class TestFlush:
    """Test batch submission."""

    @pytest.mark.asyncio
    async def test_batches_and_receipts(self, audit_log, notarizer, sink):
        append_many(audit_log, 5)

        assert await notarizer.flush() == 5

        assert sink.batches == [[0, 1], [2, 3], [4]]
        assert audit_log.get_receipts(3) == ["tx-3"]
        assert notarizer.pending_count == 0
        assert audit_log.get_metrics()["pending_notarization"] == 0

    @pytest.mark.asyncio
    async def test_retry_then_success(self, audit_log, notarizer, sink):
        sink.fail_times = 2
        append_many(audit_log, 1)

        assert await notarizer.flush() == 1
        assert sink.attempts == 3
        stats = notarizer.get_stats()
        assert stats["submitted"] == 1
        assert stats["notarized"] == 1
        assert stats["failed_batches"] == 0

    @pytest.mark.asyncio
    async def test_failed_batch_stays_pending(self, audit_log, sink):
        """Test an unavailable notary leaves decisions pending without raising."""
        notarizer = DecisionNotarizer(audit_log, sink, batch_size=10, retry_count=2, retry_interval=0)
        notarizer.attach()
        sink.fail_times = 2
        append_many(audit_log, 3)

        assert await notarizer.flush() == 0
        assert notarizer.pending_count == 3
        assert notarizer.get_stats()["failed_batches"] == 1

        assert await notarizer.flush() == 3
        assert notarizer.pending_count == 0

    @pytest.mark.asyncio
    async def test_missing_receipt_stays_pending(self, audit_log, notarizer, sink):
        sink.drop_ids = {1}
        append_many(audit_log, 2)

        assert await notarizer.flush() == 1
        assert notarizer.pending_count == 1
        assert audit_log.get_receipts(1) == []

    @pytest.mark.asyncio
    async def test_pending_keeps_order(self, audit_log, notarizer, sink):
        sink.drop_ids = {0}
        append_many(audit_log, 1)
        await notarizer.flush()
        append_many(audit_log, 1)
        sink.drop_ids = set()

        await notarizer.flush()
        assert sink.batches[-1] == [0, 1]

    @pytest.mark.asyncio
    async def test_close(self, audit_log, notarizer, sink):
        await notarizer.close()
        assert sink.closed is True
        append_many(audit_log, 1)
        assert notarizer.pending_count == 0


class TestSinks:
    """Test the file and http sinks."""

    @pytest.mark.asyncio
    async def test_file_sink(self, audit_log, tmp_path):
        sink = FileNotarySink(tmp_path / "notary" / "decisions.jsonl")
        seqs = append_many(audit_log, 2)
        decisions = [audit_log.get(s) for s in seqs]

        receipts = await sink.submit(decisions)

        lines = sink.path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        record = json.loads(lines[1])
        assert record["sequence_id"] == 1
        assert record["receipt"] == receipts[1]
        assert receipts[0].startswith("file:0:")

    def test_parse_receipts(self):
        assert HttpNotarySink._parse_receipts({"receipts": {"3": "0xabc"}}) == {3: "0xabc"}
        with pytest.raises(NotaryError):
            HttpNotarySink._parse_receipts({"status": "ok"})

    @pytest.mark.asyncio
    async def test_http_error_status(self, audit_log):
        sink = HttpNotarySink("https://notary.test/decisions")
        response = MagicMock(status=503)
        response.text = AsyncMock(return_value="maintenance")
        session = MagicMock()
        session.post.return_value.__aenter__.return_value = response
        sink._get_session = AsyncMock(return_value=session)

        append_many(audit_log, 1)
        with pytest.raises(NotaryError):
            await sink.submit([audit_log.get(0)])

    @pytest.mark.asyncio
    async def test_http_success(self, audit_log):
        sink = HttpNotarySink("https://notary.test/decisions")
        response = MagicMock(status=201)
        response.json = AsyncMock(return_value={"receipts": {"0": "0xfeed"}})
        session = MagicMock()
        session.post.return_value.__aenter__.return_value = response
        sink._get_session = AsyncMock(return_value=session)

        append_many(audit_log, 1)
        assert await sink.submit([audit_log.get(0)]) == {0: "0xfeed"}

        payload = session.post.call_args.kwargs["json"]
        assert payload["decisions"][0]["sequence_id"] == 0

    def test_from_config(self, audit_log, tmp_path):
        file_notarizer = DecisionNotarizer.from_config(
            NotarizationConfig(enabled=True, path=str(tmp_path / "n.jsonl")), audit_log
        )
        assert isinstance(file_notarizer._sink, FileNotarySink)

        http_notarizer = DecisionNotarizer.from_config(
            NotarizationConfig(enabled=True, sink="http", url="https://notary.test"), audit_log
        )
        assert isinstance(http_notarizer._sink, HttpNotarySink)


class TestEngineNotarization:
    """Test the engine wiring."""

    @pytest.mark.asyncio
    async def test_engine_flush(self, funded_engine, sink):
        engine = funded_engine
        engine.enable_notarization(
            DecisionNotarizer(engine.audit_log, sink, retry_interval=0)
        )
        await engine.reallocate(AGENT, "aave", "compound", 100)

        assert await engine.flush_notarizations() == 1
        assert engine.audit_log.get_receipts(2) == ["tx-2"]

        await engine.close()
        assert sink.closed is True

    @pytest.mark.asyncio
    async def test_notary_outage_never_blocks_operations(self, funded_engine):
        engine = funded_engine
        sink = MockNotarySink(fail_times=100)
        engine.enable_notarization(
            DecisionNotarizer(engine.audit_log, sink, retry_count=1, retry_interval=0)
        )

        await engine.deposit("carol", 100)
        assert await engine.flush_notarizations() == 0
        assert engine.notarizer.pending_count == 1
        assert engine.check_invariants() == []
