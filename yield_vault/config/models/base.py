"""
Base Configuration Model.

Pydantic base class with ${VAR} / ${VAR:default} substitution and masking of
sensitive fields when printed.
"""

import os
import re
from typing import Any, ClassVar, Set

from pydantic import BaseModel, ConfigDict, model_validator

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


def substitute_env_vars(value: str) -> str:
    """
    Substitute environment variables in a string.

    ``${VAR}`` becomes the value of VAR (empty when unset); ``${VAR:default}``
    falls back to ``default``.
    """

    def replace_match(match: re.Match) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        default_value = match.group(2)
        return default_value if default_value is not None else ""

    return ENV_VAR_PATTERN.sub(replace_match, value)


def process_value(value: Any) -> Any:
    """Recursively substitute env vars in strings, dicts and lists."""
    if isinstance(value, str):
        return substitute_env_vars(value)
    elif isinstance(value, dict):
        return {k: process_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [process_value(item) for item in value]
    return value


class BaseConfig(BaseModel):
    """
    Base configuration model.

    Immutable, ignores unknown keys, substitutes environment variables and
    masks sensitive values in repr().

    Example:
        >>> class SinkConfig(BaseConfig):
        ...     url: str
        ...     api_token: str = "${NOTARY_TOKEN:}"
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        validate_default=True,
        str_strip_whitespace=True,
    )

    _sensitive_fields: ClassVar[Set[str]] = {
        "api_key",
        "password",
        "secret",
        "token",
    }

    @model_validator(mode="before")
    @classmethod
    def substitute_environment_variables(cls, data: Any) -> Any:
        """Substitute environment variables in all string values."""
        if isinstance(data, dict):
            return process_value(data)
        return data

    def masked_dict(self) -> dict[str, Any]:
        """Dump the model with sensitive values replaced by '***'."""
        return self._mask_sensitive(self.model_dump())

    def _mask_sensitive(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if self._is_sensitive_field(key) and value:
                result[key] = "***"
            elif isinstance(value, dict):
                result[key] = self._mask_sensitive(value)
            else:
                result[key] = value
        return result

    def _is_sensitive_field(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        return any(sensitive in field_lower for sensitive in self._sensitive_fields)

    def __repr__(self) -> str:
        masked = self.masked_dict()
        fields = ", ".join(f"{k}={v!r}" for k, v in masked.items())
        return f"{self.__class__.__name__}({fields})"

    def __str__(self) -> str:
        return self.__repr__()
