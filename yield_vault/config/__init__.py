# Config module - vault configuration system
from .exceptions import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)
from .loader import ConfigLoader, load_config
from .models import AppConfig, BaseConfig, NotarizationConfig, VaultConfig

__all__ = [
    # Exceptions
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigParseError",
    "ConfigValidationError",
    # Loader
    "ConfigLoader",
    "load_config",
    # Models
    "BaseConfig",
    "VaultConfig",
    "NotarizationConfig",
    "AppConfig",
]
