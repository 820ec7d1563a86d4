"""Strategy adapter capability contract."""

from .base import StrategyAdapter

__all__ = ["StrategyAdapter"]
