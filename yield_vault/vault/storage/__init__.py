"""Persistence for the vault ledger and decision log."""

from .repository import DEFAULT_DB_PATH, VaultRepository

__all__ = ["DEFAULT_DB_PATH", "VaultRepository"]
