"""Notarization side channel for the decision audit log."""

from .notarizer import (
    DecisionNotarizer,
    FileNotarySink,
    HttpNotarySink,
    NotaryError,
    NotarySink,
)

__all__ = [
    "DecisionNotarizer",
    "FileNotarySink",
    "HttpNotarySink",
    "NotaryError",
    "NotarySink",
]
