"""
Pytest configuration and fixtures for yield vault tests.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# File logs go to a scratch directory, set before any logger is created
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="yield-vault-logs-"))

import pytest
import pytest_asyncio

from yield_vault.config.models import VaultConfig
from yield_vault.vault import (
    AccessController,
    AllocationEngine,
    DecisionAuditLog,
    ShareLedger,
    StrategyRegistry,
    VaultEngine,
    VaultRepository,
    VaultState,
)
from tests.mocks import SimulatedAdapter

OWNER = "owner"
AGENT = "agent"
ALICE = "alice"
BOB = "bob"


# =============================================================================
# Clock Fixture
# =============================================================================


class ManualClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> ManualClock:
    """Clock starting at 2024-01-01 00:00 UTC."""
    return ManualClock(datetime(2024, 1, 1, tzinfo=timezone.utc))


# =============================================================================
# Adapter Fixtures
# =============================================================================


@pytest.fixture
def aave() -> SimulatedAdapter:
    return SimulatedAdapter("aave", label="Aave v3 USDC")


@pytest.fixture
def compound() -> SimulatedAdapter:
    return SimulatedAdapter("compound", label="Compound v3 USDC", yield_rate=Decimal("0.04"))


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def vault_config() -> VaultConfig:
    return VaultConfig(owner=OWNER, operators=[AGENT], page_cap=100)


@pytest.fixture
def state() -> VaultState:
    return VaultState()


@pytest.fixture
def access(state, clock) -> AccessController:
    return AccessController(state, owner=OWNER, operators=[AGENT], clock=clock)


@pytest.fixture
def audit_log(clock) -> DecisionAuditLog:
    return DecisionAuditLog(page_cap=100, clock=clock)


@pytest.fixture
def registry(state, access, clock) -> StrategyRegistry:
    return StrategyRegistry(state, access, clock=clock)


@pytest.fixture
def allocator(state, registry, audit_log, access) -> AllocationEngine:
    return AllocationEngine(state, registry, audit_log, access)


@pytest.fixture
def ledger(state, allocator, audit_log, clock) -> ShareLedger:
    return ShareLedger(state, allocator, audit_log, clock=clock)


@pytest.fixture
def engine(vault_config, clock) -> VaultEngine:
    """In-memory engine with no adapters."""
    return VaultEngine(vault_config, clock=clock)


@pytest_asyncio.fixture
async def funded_engine(engine, aave, compound) -> VaultEngine:
    """
    Engine with two adapters registered, aave active, and
    alice=1000 / bob=1000 deposited (all placed into aave).
    """
    await engine.register_adapter(OWNER, aave)
    await engine.register_adapter(OWNER, compound)
    await engine.set_active_adapter(AGENT, "aave")
    await engine.deposit(ALICE, 1_000)
    await engine.deposit(BOB, 1_000)
    return engine


@pytest.fixture
def repository(tmp_path) -> VaultRepository:
    repo = VaultRepository(str(tmp_path / "vault.db"))
    repo.initialize()
    return repo
