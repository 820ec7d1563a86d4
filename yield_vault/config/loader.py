"""
Configuration Loader.

Loads the vault YAML configuration, overlays an environment-specific file,
substitutes environment variables and validates the result with pydantic.
"""

import os
import re
from copy import deepcopy
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .exceptions import (
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)
from .models import AppConfig

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


class ConfigLoader:
    """
    YAML configuration loader with .env support.

    Example:
        >>> loader = ConfigLoader()
        >>> config = loader.load("config/vault.yaml", env="production")
        >>> config.vault.page_cap
        100
    """

    def __init__(self, env_file: Optional[str | Path] = None):
        """
        Initialize ConfigLoader.

        Args:
            env_file: Optional path to .env file. If not provided,
                     .env is looked up next to the config file.
        """
        self._env_file = Path(env_file) if env_file else None
        self._loaded_env = False

    def load(
        self,
        path: str | Path,
        env: Optional[str] = None,
    ) -> AppConfig:
        """
        Load configuration with optional environment overlay.

        Loading flow:
        1. Load .env file (if exists)
        2. Load base YAML
        3. Deep merge ``<stem>.<env>.yaml`` when present
        4. Substitute environment variables
        5. Validate into AppConfig

        Raises:
            ConfigFileNotFoundError: If base config file not found
            ConfigParseError: If YAML parsing fails
            ConfigValidationError: If validation fails
        """
        path = Path(path)

        self._load_env_file(path.parent)

        base_config = self.load_yaml(path)

        if env:
            env_config_path = path.parent / f"{path.stem}.{env}{path.suffix}"
            if env_config_path.exists():
                base_config = self.merge_configs(base_config, self.load_yaml(env_config_path))

        final_config = self.substitute_env_vars(base_config)

        try:
            return AppConfig(**final_config)
        except ValidationError as e:
            raise ConfigValidationError(
                [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            ) from e

    def load_yaml(self, path: str | Path) -> dict[str, Any]:
        """
        Load a YAML file into a dictionary.

        Raises:
            ConfigFileNotFoundError: If file not found
            ConfigParseError: If YAML parsing fails or the top level is not a mapping
        """
        path = Path(path)

        if not path.exists():
            raise ConfigFileNotFoundError(str(path))

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigParseError(str(path), str(e)) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigParseError(str(path), "top level must be a mapping")
        return data

    def merge_configs(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Deep merge two configuration dictionaries; override wins.

        Example:
            >>> loader.merge_configs({"vault": {"page_cap": 100, "owner": "a"}},
            ...                      {"vault": {"page_cap": 50}})
            {'vault': {'page_cap': 50, 'owner': 'a'}}
        """
        result = deepcopy(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self.merge_configs(result[key], value)
            else:
                result[key] = deepcopy(value)

        return result

    def substitute_env_vars(self, data: Any) -> Any:
        """Substitute ${VAR} and ${VAR:default} throughout the data."""
        if isinstance(data, dict):
            return {k: self.substitute_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [self.substitute_env_vars(item) for item in data]
        elif isinstance(data, str):
            return self._substitute_string(data)
        else:
            return data

    def _substitute_string(self, value: str) -> Any:
        # A value that is exactly one reference gets type conversion
        full_match = ENV_VAR_PATTERN.fullmatch(value)
        if full_match:
            var_name, default = full_match.groups()
            env_value = os.environ.get(var_name, default)

            if env_value is None:
                return value

            return self._convert_value(env_value)

        def replace_match(match: re.Match) -> str:
            var_name, default = match.groups()
            return os.environ.get(var_name, default if default is not None else match.group(0))

        return ENV_VAR_PATTERN.sub(replace_match, value)

    def _convert_value(self, value: str) -> Any:
        """Convert a substituted string to bool, int or float when it looks like one."""
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            float_val = float(value)
            if float_val.is_integer() and "." not in value and "e" not in value.lower():
                return int(float_val)
            return float_val
        except ValueError:
            pass

        return value

    def _load_env_file(self, config_dir: Path) -> None:
        if self._loaded_env:
            return

        candidates = []
        if self._env_file:
            candidates.append(self._env_file)
        candidates.extend([
            config_dir / ".env",
            config_dir.parent / ".env",
            Path.cwd() / ".env",
        ])

        for env_path in candidates:
            if env_path.exists():
                load_dotenv(env_path)
                self._loaded_env = True
                return


def load_config(
    path: str | Path,
    env: Optional[str] = None,
    env_file: Optional[str | Path] = None,
) -> AppConfig:
    """Convenience wrapper around ConfigLoader.load()."""
    loader = ConfigLoader(env_file=env_file)
    return loader.load(path, env=env)
