# Mock classes for testing
"""Simulated yield sources and notary sinks for testing."""

from .adapter_mock import SimulatedAdapter
from .notary_mock import MockNotarySink

__all__ = [
    "SimulatedAdapter",
    "MockNotarySink",
]
