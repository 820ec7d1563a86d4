"""
Strategy Registry Unit Tests.
"""

import pytest

from yield_vault.core import (
    AdapterAlreadyRegisteredError,
    AdapterNotDrainedError,
    AdapterNotFoundError,
    AdapterNotHealthyError,
    UnauthorizedError,
)
from tests.mocks import SimulatedAdapter

OWNER = "owner"
AGENT = "agent"


class TestRegistration:
    """Test adapter registration."""

    def test_register(self, registry, state, aave, clock):
        adapter_id = registry.register(OWNER, aave)

        assert adapter_id == "aave"
        assert "aave" in registry
        record = state.adapters["aave"]
        assert record.label == "Aave v3 USDC"
        assert record.is_active is False
        assert record.registered_at == clock()

    def test_duplicate_identity(self, registry, aave):
        """Test registering the same adapter id twice fails."""
        registry.register(OWNER, aave)
        with pytest.raises(AdapterAlreadyRegisteredError):
            registry.register(OWNER, SimulatedAdapter("aave"))

    def test_register_requires_owner(self, registry, aave):
        with pytest.raises(UnauthorizedError):
            registry.register(AGENT, aave)

    def test_reattach_restored_record(self, registry, state, aave):
        """Test a restored record keeps its book value when the adapter returns."""
        registry.register(OWNER, aave)
        state.adapters["aave"].allocated = 123
        registry._adapters.clear()

        assert registry.unattached_records() == ["aave"]
        registry.register(OWNER, aave)
        assert state.adapters["aave"].allocated == 123
        assert registry.unattached_records() == []

    def test_unknown_adapter(self, registry):
        with pytest.raises(AdapterNotFoundError):
            registry.get("missing")

    def test_unregister(self, registry, state, aave):
        registry.register(OWNER, aave)
        registry.unregister(OWNER, "aave")
        assert "aave" not in registry
        assert "aave" not in state.adapters

    def test_unregister_with_value(self, registry, state, aave):
        """Test an adapter holding value cannot be removed."""
        registry.register(OWNER, aave)
        state.adapters["aave"].allocated = 1
        with pytest.raises(AdapterNotDrainedError):
            registry.unregister(OWNER, "aave")


class TestActivation:
    """Test active adapter selection."""

    @pytest.mark.asyncio
    async def test_set_active(self, registry, state, aave):
        registry.register(OWNER, aave)
        await registry.set_active(AGENT, "aave")

        assert state.active_adapter_id == "aave"
        assert state.adapters["aave"].is_active is True
        assert registry.get_active() is aave

    @pytest.mark.asyncio
    async def test_set_active_unhealthy(self, registry, state, aave):
        aave.healthy = False
        registry.register(OWNER, aave)

        with pytest.raises(AdapterNotHealthyError):
            await registry.set_active(AGENT, "aave")
        assert state.active_adapter_id is None
        assert state.adapters["aave"].is_healthy is False

    @pytest.mark.asyncio
    async def test_unreachable_adapter_reports_unhealthy(self, registry, aave):
        """Test an exception from is_healthy is reported as unhealthy, not raised."""
        aave.raise_on_health = ConnectionError("rpc down")
        registry.register(OWNER, aave)

        assert await registry.check_health("aave") is False
        with pytest.raises(AdapterNotHealthyError):
            await registry.set_active(AGENT, "aave")

    @pytest.mark.asyncio
    async def test_set_active_requires_operator(self, registry, aave):
        registry.register(OWNER, aave)
        with pytest.raises(UnauthorizedError):
            await registry.set_active("mallory", "aave")

    @pytest.mark.asyncio
    async def test_owner_may_set_active(self, registry, aave):
        registry.register(OWNER, aave)
        await registry.set_active(OWNER, "aave")
        assert registry.active_adapter_id == "aave"

    @pytest.mark.asyncio
    async def test_exactly_one_active(self, registry, state, aave, compound):
        """Test switching between drained adapters keeps a single active flag."""
        registry.register(OWNER, aave)
        registry.register(OWNER, compound)

        await registry.set_active(AGENT, "aave")
        await registry.set_active(AGENT, "compound")

        active = [r.adapter_id for r in state.adapters.values() if r.is_active]
        assert active == ["compound"]

    @pytest.mark.asyncio
    async def test_switch_away_from_funded_adapter(self, registry, state, aave, compound):
        """Test switching away from an adapter that still holds value is refused."""
        registry.register(OWNER, aave)
        registry.register(OWNER, compound)
        await registry.set_active(AGENT, "aave")
        state.adapters["aave"].allocated = 10

        with pytest.raises(AdapterNotDrainedError):
            await registry.set_active(AGENT, "compound")
        assert state.active_adapter_id == "aave"

    @pytest.mark.asyncio
    async def test_deactivate(self, registry, state, aave):
        registry.register(OWNER, aave)
        await registry.set_active(AGENT, "aave")

        assert await registry.deactivate(AGENT) == "aave"
        assert state.active_adapter_id is None
        assert await registry.deactivate(AGENT) is None

    @pytest.mark.asyncio
    async def test_deactivate_requires_drain(self, registry, state, aave):
        registry.register(OWNER, aave)
        await registry.set_active(AGENT, "aave")
        state.adapters["aave"].allocated = 5

        with pytest.raises(AdapterNotDrainedError):
            await registry.deactivate(AGENT)

    @pytest.mark.asyncio
    async def test_unregister_active(self, registry, aave):
        registry.register(OWNER, aave)
        await registry.set_active(AGENT, "aave")
        with pytest.raises(AdapterNotDrainedError):
            registry.unregister(OWNER, "aave")


class TestRefresh:
    """Test cached health and value refresh."""

    @pytest.mark.asyncio
    async def test_refresh_reads_reported_assets(self, registry, state, aave, compound):
        registry.register(OWNER, aave)
        registry.register(OWNER, compound)
        aave.balance = 1_050
        compound.healthy = False

        records = await registry.refresh()

        assert {r.adapter_id for r in records} == {"aave", "compound"}
        assert state.adapters["aave"].reported_assets == 1_050
        assert state.adapters["compound"].is_healthy is False
        assert state.adapters["aave"].last_checked is not None

    @pytest.mark.asyncio
    async def test_refresh_keeps_cache_on_error(self, registry, state, aave, monkeypatch):
        """Test a failing reported_assets keeps the cached value and marks unhealthy."""
        registry.register(OWNER, aave)
        state.adapters["aave"].reported_assets = 77

        async def broken():
            raise TimeoutError("slow rpc")

        monkeypatch.setattr(aave, "reported_assets", broken)
        await registry.update_cache("aave")

        assert state.adapters["aave"].reported_assets == 77
        assert state.adapters["aave"].is_healthy is False
