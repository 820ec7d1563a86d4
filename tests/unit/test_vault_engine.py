"""
Vault Engine Tests.

End-to-end behaviour of the facade: conservation, atomicity under adapter
failures, reentrancy, pause semantics and the query surface.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from yield_vault.core import (
    AdapterFailureError,
    AdapterNotHealthyError,
    InsufficientBalanceError,
    InvalidRangeError,
    InvariantViolationError,
    PausedError,
    ReentrantCallError,
    UnauthorizedError,
)
from yield_vault.vault import MutationGuard, VaultState
from yield_vault.vault.models import Account, DecisionDraft, DecisionType, OutcomeStatus

OWNER = "owner"
AGENT = "agent"
ALICE = "alice"
BOB = "bob"


def shares_sum(engine):
    return sum(a.shares for a in engine.state.accounts.values())


# =============================================================================
# Conservation
# =============================================================================


class TestConservation:
    """Test share and value conservation across operation sequences."""

    @pytest.mark.asyncio
    async def test_shares_sum_after_every_operation(self, funded_engine, aave):
        engine = funded_engine
        operations = [
            ("deposit", "carol", 333),
            ("withdraw", ALICE, 250),
            ("deposit", BOB, 1_001),
            ("withdraw", "carol", 100),
            ("withdraw", BOB, 999),
        ]

        for op, account, value in operations:
            if op == "deposit":
                await engine.deposit(account, value)
            else:
                await engine.withdraw(account, value)
            assert shares_sum(engine) == engine.state.total_shares
            assert engine.check_invariants() == []

    @pytest.mark.asyncio
    async def test_value_changes_only_by_moved_amounts(self, funded_engine):
        engine = funded_engine
        before = engine.state.total_assets

        await engine.deposit("carol", 500)
        paid = await engine.withdraw(ALICE, 300)
        await engine.reallocate(AGENT, "aave", "compound", 700)

        assert engine.state.total_assets == before + 500 - paid
        assert engine.state.total_assets == (
            engine.state.idle_assets + engine.state.allocated_assets
        )

    @pytest.mark.asyncio
    async def test_full_exit_returns_to_empty_state(self, funded_engine):
        engine = funded_engine
        await engine.withdraw(ALICE, 1_000)
        await engine.withdraw(BOB, 1_000)

        assert engine.state.total_shares == 0
        assert engine.state.total_assets == 0
        # Bootstrap applies again
        assert await engine.deposit("carol", 42) == 42

    @pytest.mark.asyncio
    async def test_yield_does_not_change_book_value(self, funded_engine, aave):
        """Test adapter yield only shows up in reported assets."""
        aave.accrue(100)
        await funded_engine.refresh_adapters()

        metrics = funded_engine.get_vault_metrics()
        assert metrics["total_assets"] == "2000"
        assert metrics["reported_assets"] == "2100"


# =============================================================================
# Atomicity
# =============================================================================


class TestAtomicity:
    """Test failed operations leave state unchanged."""

    @pytest.mark.asyncio
    async def test_deposit_rolled_back_on_place_failure(self, funded_engine, aave):
        engine = funded_engine
        before = engine.state.snapshot()
        aave.fail_place = True

        with pytest.raises(AdapterFailureError):
            await engine.deposit("carol", 500)

        assert engine.state == before
        assert engine.get_account("carol") is None
        assert engine.get_user_audit_summary("carol")["deposit_count"] == 0

    @pytest.mark.asyncio
    async def test_deposit_rolled_back_on_unhealthy(self, funded_engine, aave):
        engine = funded_engine
        aave.healthy = False

        with pytest.raises(AdapterNotHealthyError):
            await engine.deposit(ALICE, 500)

        assert engine.state.total_assets == 2_000
        assert engine.get_balance(ALICE) == 1_000

    @pytest.mark.asyncio
    async def test_withdraw_pull_failure(self, funded_engine, aave):
        engine = funded_engine
        before = engine.state.snapshot()
        aave.raise_on_pull = ConnectionError("rpc down")

        with pytest.raises(AdapterFailureError):
            await engine.withdraw(ALICE, 500)

        assert engine.state == before

    @pytest.mark.asyncio
    async def test_short_pull_keeps_returned_funds_idle(self, funded_engine, aave):
        """Test a short pull fails the withdrawal but keeps the returned value idle."""
        engine = funded_engine
        aave.liquidity = 300

        with pytest.raises(InsufficientBalanceError):
            await engine.withdraw(ALICE, 1_000)

        state = engine.state
        assert state.idle_assets == 300
        assert state.adapters["aave"].allocated == 1_700
        assert state.total_assets == 2_000
        assert engine.get_balance(ALICE) == 1_000
        assert engine.check_invariants() == []
        assert len(engine.get_decisions_by_type(DecisionType.WITHDRAW_DEALLOCATE)) == 1

        # Liquidity back: idle is used first, only the rest is pulled
        aave.liquidity = None
        assert await engine.withdraw(ALICE, 1_000) == 1_000
        assert aave.pull_calls[-1] == 700

    @pytest.mark.asyncio
    async def test_rebalance_atomicity(self, funded_engine, compound):
        """Test a failed destination leg parks the pulled amount idle with no loss."""
        engine = funded_engine
        compound.fail_place = True

        ok = await engine.reallocate(AGENT, "aave", "compound", 500, reason="rotate")

        assert ok is False
        assert engine.state.idle_assets == 500
        assert engine.state.total_assets == 2_000
        assert engine.check_invariants() == []
        seq = engine.get_decisions_by_type(DecisionType.REBALANCE, 1)[0].sequence_id
        assert engine.get_decision_outcome(seq).status == OutcomeStatus.PARKED_IDLE

    @pytest.mark.asyncio
    async def test_parked_funds_go_to_next_deposit_placement(self, funded_engine, aave, compound):
        engine = funded_engine
        compound.fail_place = True
        await engine.reallocate(AGENT, "aave", "compound", 500)

        await engine.reallocate(AGENT, None, "aave", 500)

        assert engine.state.idle_assets == 0
        assert engine.state.adapters["aave"].allocated == 2_000


# =============================================================================
# Concurrency and reentrancy
# =============================================================================


class TestSerialisation:
    """Test the single-writer guard."""

    @pytest.mark.asyncio
    async def test_adapter_callback_is_rejected(self, funded_engine, aave):
        """Test an adapter calling back into the vault mid-pull fails cleanly."""
        engine = funded_engine
        before = engine.state.snapshot()

        async def reenter(amount):
            await engine.deposit("mallory", 10)

        aave.on_pull = reenter

        with pytest.raises(AdapterFailureError) as exc_info:
            await engine.withdraw(ALICE, 100)

        assert isinstance(exc_info.value.__cause__, ReentrantCallError)
        assert engine.state == before

        # Guard released
        aave.on_pull = None
        assert await engine.withdraw(ALICE, 100) == 100

    @pytest.mark.asyncio
    async def test_concurrent_deposits_are_serialised(self, funded_engine):
        engine = funded_engine
        results = await asyncio.gather(
            *(engine.deposit(f"user{i}", 100 + i) for i in range(10))
        )

        assert len(results) == 10
        assert shares_sum(engine) == engine.state.total_shares
        assert engine.state.total_assets == 2_000 + sum(100 + i for i in range(10))
        assert engine.check_invariants() == []


class TestMutationGuard:
    """Test transaction semantics of the guard."""

    @pytest.mark.asyncio
    async def test_invariant_violation_rolls_back(self):
        state = VaultState()
        guard = MutationGuard(state)

        with pytest.raises(InvariantViolationError):
            async with guard.transaction("broken"):
                state.total_assets = 5

        assert state.total_assets == 0

    @pytest.mark.asyncio
    async def test_checkpoint_survives_failure(self):
        state = VaultState()
        guard = MutationGuard(state)
        committed = []

        with pytest.raises(RuntimeError):
            async with guard.transaction("partial", on_commit=lambda: committed.append(1)) as tx:
                state.accounts["a"] = Account("a", shares=10)
                state.total_shares = 10
                state.total_assets = 10
                state.idle_assets = 10
                tx.checkpoint()
                state.idle_assets = 0
                raise RuntimeError("late failure")

        assert state.idle_assets == 10
        assert committed == [1]
        assert not guard.locked

    @pytest.mark.asyncio
    async def test_nested_hold_raises(self):
        guard = MutationGuard(VaultState())
        async with guard.hold("outer"):
            assert guard.current_operation == "outer"
            with pytest.raises(ReentrantCallError):
                async with guard.hold("inner"):
                    pass


# =============================================================================
# Pause semantics
# =============================================================================


class TestPauseSemantics:
    """Test what is blocked while paused."""

    @pytest.mark.asyncio
    async def test_paused_blocks_allocation_activity(self, funded_engine):
        engine = funded_engine
        await engine.pause(AGENT, "oracle outage")

        with pytest.raises(PausedError):
            await engine.deposit(ALICE, 100)
        with pytest.raises(PausedError):
            await engine.withdraw(ALICE, 100)
        with pytest.raises(PausedError):
            await engine.reallocate(AGENT, "aave", "compound", 100)

    @pytest.mark.asyncio
    async def test_emergency_withdraw_while_paused(self, funded_engine, aave):
        engine = funded_engine
        await engine.pause(AGENT)

        amount = await engine.emergency_withdraw(ALICE, 1_000)

        assert amount == 1_000
        assert aave.drain_calls == 1
        assert engine.state.active_adapter_id is None
        assert engine.state.total_assets == 1_000
        assert engine.get_balance(BOB) == 1_000
        assert engine.preview_withdraw(1_000) == 1_000
        assert engine.check_invariants() == []

    @pytest.mark.asyncio
    async def test_emergency_withdraw_after_total_loss(self, funded_engine, aave):
        """Test a drain that recovers nothing is committed, not rolled back to phantom assets."""
        engine = funded_engine
        aave.drain_loss = 10_000

        with pytest.raises(InsufficientBalanceError):
            await engine.emergency_withdraw(ALICE, 500)

        assert aave.drain_calls == 1
        assert aave.balance == 0
        assert engine.state.adapters["aave"].allocated == 0
        assert engine.state.active_adapter_id is None
        assert engine.state.total_assets == 0
        assert engine.state.total_shares == 0
        assert engine.get_balance(ALICE) == 0
        assert engine.get_balance(BOB) == 0
        assert engine.check_invariants() == []
        drains = engine.get_decisions_by_type(DecisionType.EMERGENCY_WITHDRAW, 10)
        assert [d.amount for d in drains] == [0]

        # Empty vault bootstraps again
        assert await engine.deposit(ALICE, 100) == 100

    @pytest.mark.asyncio
    async def test_unpause_restores_operations(self, funded_engine):
        engine = funded_engine
        await engine.pause(AGENT)
        await engine.unpause(OWNER, "resolved")

        assert await engine.deposit(ALICE, 100) == 100
        history = engine.get_pause_history()
        assert [t.actor for t in history] == [AGENT, OWNER]

    @pytest.mark.asyncio
    async def test_pause_requires_operator(self, funded_engine):
        with pytest.raises(UnauthorizedError):
            await funded_engine.pause(ALICE)
        assert funded_engine.state.paused is False


# =============================================================================
# Audit surface
# =============================================================================


class TestAuditSurface:
    """Test decisions exposed through the engine."""

    @pytest.mark.asyncio
    async def test_deposits_recorded(self, funded_engine):
        result = funded_engine.get_ai_decisions(0, 10)

        assert result["count"] == 2
        assert result["total_decisions"] == 2
        assert [d.decision_type for d in result["decisions"]] == [
            DecisionType.DEPOSIT_ALLOCATE,
            DecisionType.DEPOSIT_ALLOCATE,
        ]

    @pytest.mark.asyncio
    async def test_range_validation(self, funded_engine):
        with pytest.raises(InvalidRangeError):
            funded_engine.get_ai_decisions(10, 5)
        with pytest.raises(InvalidRangeError):
            funded_engine.get_ai_decisions(0, funded_engine.audit_log.page_cap + 1)

    @pytest.mark.asyncio
    async def test_integrity_holds_over_time(self, funded_engine, clock):
        engine = funded_engine
        await engine.reallocate(AGENT, "aave", "compound", 300, confidence=Decimal("0.7"))
        await engine.withdraw(BOB, 500)
        clock.advance(days=30)
        await engine.deposit("carol", 10)

        total = engine.get_ai_decisions(0, 100)["total_decisions"]
        assert all(engine.verify_decision(seq) for seq in range(total))

    @pytest.mark.asyncio
    async def test_rejected_move_still_recorded(self, funded_engine, compound):
        compound.healthy = False

        with pytest.raises(AdapterNotHealthyError):
            await funded_engine.reallocate(AGENT, "aave", "compound", 100)

        decision = funded_engine.get_decisions_by_adapter("compound", 1)[0]
        assert decision.decision_type == DecisionType.REBALANCE
        outcome = funded_engine.get_decision_outcome(decision.sequence_id)
        assert outcome.status == OutcomeStatus.REJECTED

    @pytest.mark.asyncio
    async def test_log_decision(self, funded_engine):
        seq = await funded_engine.log_decision(
            AGENT,
            DecisionDraft(
                decision_type=DecisionType.REBALANCE,
                reason="hold: spread below threshold",
                confidence=Decimal("0.4"),
            ),
        )

        decision = funded_engine.audit_log.get(seq)
        assert decision.actor == AGENT
        assert funded_engine.verify_decision(seq)

        with pytest.raises(UnauthorizedError):
            await funded_engine.log_decision(ALICE, DecisionDraft(DecisionType.REBALANCE))

    @pytest.mark.asyncio
    async def test_time_range_query(self, funded_engine, clock):
        start = clock()
        clock.advance(days=2)
        await funded_engine.deposit("carol", 10)

        recent = funded_engine.get_decisions_by_time_range(
            start + timedelta(days=1), clock()
        )
        assert [d.actor for d in recent] == ["carol"]


# =============================================================================
# Summaries and metrics
# =============================================================================


class TestSummaries:
    """Test account summaries and vault metrics."""

    @pytest.mark.asyncio
    async def test_user_audit_summary(self, funded_engine, clock):
        await funded_engine.withdraw(ALICE, 400)

        summary = funded_engine.get_user_audit_summary(ALICE)

        assert summary["total_deposited"] == "1000"
        assert summary["total_withdrawn"] == "400"
        assert summary["deposit_count"] == 1
        assert summary["withdrawal_count"] == 1
        assert summary["shares"] == "600"
        assert summary["current_value"] == "600"
        assert summary["last_activity_time"] == clock().isoformat()

    @pytest.mark.asyncio
    async def test_unknown_account_summary(self, engine):
        summary = engine.get_user_audit_summary("nobody")
        assert summary["total_deposited"] == "0"
        assert summary["shares"] == "0"

    @pytest.mark.asyncio
    async def test_vault_metrics(self, funded_engine):
        metrics = funded_engine.get_vault_metrics()

        assert metrics["total_assets"] == "2000"
        assert metrics["total_shares"] == "2000"
        assert metrics["allocated_assets"] == "2000"
        assert metrics["active_adapter_id"] == "aave"
        assert metrics["decision_count"] == 2
        assert metrics["status"] == "running"
        assert metrics["share_price"] == "1"
        assert metrics["audit"]["by_type"]["deposit_allocate"] == 2

    @pytest.mark.asyncio
    async def test_list_adapters(self, funded_engine):
        records = {r.adapter_id: r for r in funded_engine.list_adapters()}
        assert records["aave"].is_active is True
        assert records["aave"].reported_assets == 2_000
        assert records["compound"].is_active is False
