"""
Simulated Strategy Adapter for testing.

Simulates a yield source without any external protocol.
"""

from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from yield_vault.vault.adapters import StrategyAdapter


class SimulatedAdapter(StrategyAdapter):
    """
    Simulated yield source.

    Simulates:
    - Liquidity caps on pull (short returns)
    - Health flips and unreachable health endpoints
    - Place/pull failures (False results or exceptions)
    - Yield accrual and lossy emergency drains
    - Call-backs into the vault from inside pull (reentrancy)

    Example:
        >>> adapter = SimulatedAdapter("aave", liquidity=300)
        >>> await adapter.place(1000)
        True
        >>> await adapter.pull(500)
        300
    """

    def __init__(
        self,
        adapter_id: str,
        label: str = "",
        healthy: bool = True,
        liquidity: Optional[int] = None,
        yield_rate: Decimal = Decimal("0.05"),
    ):
        self.adapter_id = adapter_id
        self.label = label or f"Simulated {adapter_id}"
        self.healthy = healthy
        self.liquidity = liquidity
        self.yield_rate = yield_rate
        self.balance = 0

        # Failure injection
        self.fail_place = False
        self.raise_on_place: Optional[Exception] = None
        self.raise_on_pull: Optional[Exception] = None
        self.raise_on_health: Optional[Exception] = None
        self.raise_on_drain: Optional[Exception] = None
        self.pull_bonus = 0
        self.drain_loss = 0

        # Hook awaited inside pull(), before funds are returned
        self.on_pull: Optional[Callable[[int], Awaitable[Any]]] = None

        # Call history
        self.place_calls: list[int] = []
        self.pull_calls: list[int] = []
        self.drain_calls = 0

    async def place(self, amount: int) -> bool:
        self.place_calls.append(amount)
        if self.raise_on_place is not None:
            raise self.raise_on_place
        if self.fail_place:
            return False
        self.balance += amount
        return True

    async def pull(self, amount: int) -> int:
        self.pull_calls.append(amount)
        if self.on_pull is not None:
            await self.on_pull(amount)
        if self.raise_on_pull is not None:
            raise self.raise_on_pull

        returned = min(amount, self.balance)
        if self.liquidity is not None:
            returned = min(returned, self.liquidity)
        self.balance -= returned
        return returned + self.pull_bonus

    async def reported_assets(self) -> int:
        return self.balance

    async def estimated_yield_rate(self) -> Decimal:
        return self.yield_rate

    async def is_healthy(self) -> bool:
        if self.raise_on_health is not None:
            raise self.raise_on_health
        return self.healthy

    async def emergency_drain(self) -> int:
        self.drain_calls += 1
        if self.raise_on_drain is not None:
            raise self.raise_on_drain
        drained = max(0, self.balance - self.drain_loss)
        self.balance = 0
        return drained

    def accrue(self, amount: int) -> None:
        """Simulate yield earned by the source."""
        self.balance += amount
