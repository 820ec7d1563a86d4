"""
Strategy Adapter Interface.

Capability contract every yield source integration implements. Concrete
adapters live outside this package; the vault only talks to this surface.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from yield_vault.core import get_logger

logger = get_logger(__name__)


class StrategyAdapter(ABC):
    """
    Base class for yield source adapters.

    Contract:
    - ``place(amount)`` returns True once the yield source holds ``amount``.
      False or an exception means nothing was placed.
    - ``pull(amount)`` returns the amount actually returned, which may be
      less than requested (liquidity). A short return is a partial success.
    - ``reported_assets()`` is the adapter's current value including yield.
    - ``is_healthy()`` must be side-effect free. Callers go through
      ``check_health()``, which maps any error to False.
    - ``emergency_drain()`` returns everything it can, regardless of health.

    Example:
        >>> class AaveAdapter(StrategyAdapter):
        ...     adapter_id = "aave-v3"
        ...     label = "Aave v3 USDC"
        ...     async def place(self, amount): ...
    """

    adapter_id: str = ""
    label: str = ""

    @abstractmethod
    async def place(self, amount: int) -> bool:
        """Deposit ``amount`` into the yield source."""

    @abstractmethod
    async def pull(self, amount: int) -> int:
        """Withdraw up to ``amount``; return what was actually returned."""

    @abstractmethod
    async def reported_assets(self) -> int:
        """Current value held by the yield source for the vault."""

    @abstractmethod
    async def estimated_yield_rate(self) -> Decimal:
        """Annualized yield estimate, e.g. Decimal("0.045")."""

    @abstractmethod
    async def is_healthy(self) -> bool:
        """Whether the yield source accepts new capital right now."""

    @abstractmethod
    async def emergency_drain(self) -> int:
        """Withdraw everything possible; return the amount recovered."""

    async def check_health(self) -> bool:
        """
        Health probe that never raises.

        An unreachable or failing adapter reports False.
        """
        try:
            return bool(await self.is_healthy())
        except Exception as e:
            logger.warning(f"Health check for {self.adapter_id} failed: {e}")
            return False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(adapter_id={self.adapter_id!r})"
