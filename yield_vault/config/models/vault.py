"""
Vault Configuration Models.

Access roles, audit log limits, persistence and the notarization side channel.
"""

from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator

from .base import BaseConfig


class NotarizationConfig(BaseConfig):
    """
    Best-effort notarization of appended decisions.

    Example:
        >>> config = NotarizationConfig(
        ...     enabled=True,
        ...     sink="http",
        ...     url="${NOTARY_URL}",
        ... )
    """

    enabled: bool = Field(
        default=False,
        description="Submit decisions to an external notary",
    )
    sink: Literal["file", "http"] = Field(
        default="file",
        description="Notary sink type",
    )
    path: str = Field(
        default="data/notary/decisions.jsonl",
        description="JSON lines file for the file sink",
    )
    url: Optional[str] = Field(
        default=None,
        description="Endpoint for the http sink",
    )
    api_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the http sink",
    )
    batch_size: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Decisions per notary submission",
    )
    retry_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per batch before leaving it pending",
    )
    retry_interval: float = Field(
        default=1.0,
        ge=0,
        description="Seconds between attempts",
    )

    @model_validator(mode="after")
    def check_sink_target(self) -> "NotarizationConfig":
        if self.enabled and self.sink == "http" and not self.url:
            raise ValueError("http notary sink requires a url")
        return self


class VaultConfig(BaseConfig):
    """
    Vault engine configuration.

    Example:
        >>> config = VaultConfig(owner="0xowner", operators=["ai-agent"])
    """

    owner: str = Field(
        default="owner",
        min_length=1,
        description="Identity holding the owner role",
    )
    operators: list[str] = Field(
        default_factory=list,
        description="Identities granted the operator role at start-up",
    )
    page_cap: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum span of a sequence-range query",
    )
    max_query_limit: int = Field(
        default=500,
        ge=1,
        description="Upper bound on limit for indexed queries",
    )
    time_bucket_seconds: int = Field(
        default=86_400,
        ge=60,
        description="Width of the time-index bucket (daily by default)",
    )
    db_path: Optional[str] = Field(
        default=None,
        description="SQLite file for persistence; in-memory only when unset",
    )

    @field_validator("operators")
    @classmethod
    def dedupe_operators(cls, v: list[str]) -> list[str]:
        """Strip blanks and duplicates while keeping order."""
        seen: list[str] = []
        for item in v:
            item = item.strip()
            if item and item not in seen:
                seen.append(item)
        return seen
