# Configuration models
from .app import AppConfig
from .base import BaseConfig
from .vault import NotarizationConfig, VaultConfig

__all__ = [
    "BaseConfig",
    "VaultConfig",
    "NotarizationConfig",
    "AppConfig",
]
