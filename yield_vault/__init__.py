"""
Yield Vault.

Pooled-asset vault: share accounting, pluggable yield strategies and an
append-only, indexed audit log of every allocation decision.
"""

__version__ = "0.1.0"
