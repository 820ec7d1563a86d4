"""
Application Configuration Model.

Top-level configuration combining the vault and notarization sections.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator

from .base import BaseConfig
from .vault import NotarizationConfig, VaultConfig


class AppConfig(BaseConfig):
    """
    Main application configuration.

    Example:
        >>> config = AppConfig(vault=VaultConfig(owner="${VAULT_OWNER:owner}"))
        >>> config = AppConfig.from_yaml("config/vault.yaml")
    """

    app_name: str = Field(
        default="Yield Vault",
        description="Application name",
    )
    environment: str = Field(
        default="development",
        description="Environment (development, staging, production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    vault: VaultConfig = Field(
        default_factory=VaultConfig,
        description="Vault engine configuration",
    )
    notarization: NotarizationConfig = Field(
        default_factory=NotarizationConfig,
        description="Notarization side channel",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate and normalize environment."""
        v = v.lower().strip()
        valid_envs = {"development", "staging", "production", "dev", "prod", "test"}
        if v not in valid_envs:
            v = "development"
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        v = v.upper().strip()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            v = "INFO"
        return v

    @property
    def is_production(self) -> bool:
        return self.environment in ("production", "prod")

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppConfig":
        """Load configuration from a single YAML file (no overlay, no .env)."""
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppConfig":
        return cls(**data)

    def validate_for_production(self) -> list[str]:
        """
        Check settings that are tolerated in development only.

        Returns:
            List of warnings (empty if fine)
        """
        errors = []

        if self.vault.db_path is None:
            errors.append("No db_path configured: vault state will not survive restarts")

        if not self.vault.operators:
            errors.append("No operator configured: only the owner can rebalance or pause")

        if self.is_production and not self.notarization.enabled:
            errors.append("Notarization disabled in production - recommended to enable")

        return errors
