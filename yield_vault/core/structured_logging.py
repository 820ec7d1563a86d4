"""
Structured logging module.

JSON-formatted logs with correlation IDs and a dedicated audit channel
for vault operations, role changes and pause transitions.
"""

import asyncio
import json
import logging
import os
import sys
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar, Union

from .logger import correlation_id_var, default_log_dir


F = TypeVar("F", bound=Callable[..., Any])


class LogChannel(Enum):
    """Log channels for different purposes."""

    APPLICATION = "application"
    AUDIT = "audit"


class EventType(Enum):
    """Event types written to the structured channels."""

    # Ledger events
    DEPOSIT = "vault.deposit"
    WITHDRAW = "vault.withdraw"
    EMERGENCY_WITHDRAW = "vault.emergency_withdraw"
    OPERATION_FAILED = "vault.operation_failed"
    SHARES_WRITTEN_OFF = "vault.shares_written_off"

    # Allocation events
    REALLOCATION = "allocation.reallocation"
    ADAPTER_REGISTERED = "adapter.registered"
    ADAPTER_ACTIVATED = "adapter.activated"
    ADAPTER_DEACTIVATED = "adapter.deactivated"
    ADAPTER_REMOVED = "adapter.removed"

    # Control events
    PAUSED = "control.paused"
    UNPAUSED = "control.unpaused"
    ROLE_GRANTED = "role.granted"
    ROLE_REVOKED = "role.revoked"
    ACCESS_DENIED = "role.access_denied"

    # Audit log events
    DECISION_APPENDED = "decision.appended"
    DECISION_NOTARIZED = "decision.notarized"


@dataclass
class LogContext:
    """Context information for structured logs."""

    correlation_id: Optional[str] = None
    account_id: Optional[str] = None
    adapter_id: Optional[str] = None
    sequence_id: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None:
                if key == "extra":
                    result.update(value)
                else:
                    result[key] = value
        return result


@dataclass
class StructuredLogRecord:
    """Structured log record for JSON output."""

    timestamp: str
    level: str
    channel: str
    event_type: str
    message: str
    logger_name: str
    context: Dict[str, Any] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "level": self.level,
            "channel": self.channel,
            "event_type": self.event_type,
            "message": self.message,
            "logger": self.logger_name,
            "context": self.context,
            "data": self.data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class JSONFormatter(logging.Formatter):
    """Formatter that outputs JSON structured logs."""

    def __init__(self, channel: LogChannel = LogChannel.APPLICATION):
        super().__init__()
        self._channel = channel

    def format(self, record: logging.LogRecord) -> str:
        context = {}
        cid = correlation_id_var.get()
        if cid is not None:
            context["correlation_id"] = cid

        if hasattr(record, "context") and isinstance(record.context, dict):
            context.update(record.context)

        event_type = getattr(record, "event_type", "log.message")
        if isinstance(event_type, EventType):
            event_type = event_type.value

        data = getattr(record, "data", {})
        if not isinstance(data, dict):
            data = {"value": data}

        structured = StructuredLogRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=record.levelname,
            channel=self._channel.value,
            event_type=event_type,
            message=record.getMessage(),
            logger_name=record.name,
            context=context,
            data=data,
        )

        return structured.to_json()


class StructuredLogger:
    """
    Structured logger with JSON output and correlation ID support.

    Each channel writes to its own ``<channel>.jsonl`` file.
    """

    def __init__(
        self,
        name: str,
        channel: LogChannel = LogChannel.APPLICATION,
        level: int = logging.INFO,
        log_dir: Optional[Path] = None,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            channel: Log channel
            level: Log level
            log_dir: Directory for log files
        """
        self._name = name
        self._channel = channel
        self._logger = logging.getLogger(f"structured.{channel.value}.{name}")
        self._logger.setLevel(level)
        self._logger.propagate = False

        if not self._logger.handlers:
            if log_dir is None:
                log_dir = default_log_dir()
            log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_dir / f"{channel.value}.jsonl",
                maxBytes=50 * 1024 * 1024,  # 50 MB
                backupCount=10,
                encoding="utf-8",
            )
            file_handler.setFormatter(JSONFormatter(channel))
            self._logger.addHandler(file_handler)

            if os.getenv("LOG_JSON_CONSOLE", "false").lower() == "true":
                console_handler = logging.StreamHandler(sys.stdout)
                console_handler.setFormatter(JSONFormatter(channel))
                self._logger.addHandler(console_handler)

    def _log(
        self,
        level: int,
        event_type: Union[str, EventType],
        message: str,
        context: Optional[LogContext] = None,
        **data: Any,
    ) -> None:
        extra = {
            "event_type": event_type,
            "data": data,
        }
        if context:
            extra["context"] = context.to_dict()

        self._logger.log(level, message, extra=extra)

    def info(
        self,
        event_type: Union[str, EventType],
        message: str,
        context: Optional[LogContext] = None,
        **data: Any,
    ) -> None:
        """Log info message."""
        self._log(logging.INFO, event_type, message, context, **data)

    def warning(
        self,
        event_type: Union[str, EventType],
        message: str,
        context: Optional[LogContext] = None,
        **data: Any,
    ) -> None:
        """Log warning message."""
        self._log(logging.WARNING, event_type, message, context, **data)

    def error(
        self,
        event_type: Union[str, EventType],
        message: str,
        context: Optional[LogContext] = None,
        **data: Any,
    ) -> None:
        """Log error message."""
        self._log(logging.ERROR, event_type, message, context, **data)


class VaultAuditLogger(StructuredLogger):
    """Audit channel for who-did-what on the vault."""

    def __init__(self, name: str, log_dir: Optional[Path] = None):
        super().__init__(name, LogChannel.AUDIT, log_dir=log_dir)

    def ledger_operation(
        self,
        event_type: EventType,
        account_id: str,
        amount: int,
        shares: int,
        **extra: Any,
    ) -> None:
        """Log a deposit or withdrawal that committed."""
        ctx = LogContext(account_id=account_id)
        self.info(
            event_type,
            f"{event_type.value}: account={account_id} amount={amount} shares={shares}",
            context=ctx,
            amount=amount,
            shares=shares,
            **extra,
        )

    def operation_failed(
        self,
        operation: str,
        caller: str,
        kind: str,
        message: str,
        **extra: Any,
    ) -> None:
        """Log a rejected or failed mutating operation."""
        ctx = LogContext(account_id=caller)
        self.warning(
            EventType.OPERATION_FAILED,
            f"{operation} failed for {caller}: [{kind}] {message}",
            context=ctx,
            operation=operation,
            kind=kind,
            **extra,
        )

    def control_change(
        self,
        event_type: EventType,
        actor: str,
        target: Optional[str] = None,
        **extra: Any,
    ) -> None:
        """Log a pause transition, role change or adapter lifecycle change."""
        ctx = LogContext(account_id=actor, adapter_id=extra.pop("adapter_id", None))
        self.info(
            event_type,
            f"{event_type.value} by {actor}" + (f" ({target})" if target else ""),
            context=ctx,
            actor=actor,
            target=target,
            **extra,
        )

    def decision_appended(
        self,
        sequence_id: int,
        decision_type: str,
        amount: int,
        **extra: Any,
    ) -> None:
        """Log an audit-log append."""
        ctx = LogContext(sequence_id=sequence_id)
        self.info(
            EventType.DECISION_APPENDED,
            f"Decision #{sequence_id} {decision_type} amount={amount}",
            context=ctx,
            decision_type=decision_type,
            amount=amount,
            **extra,
        )


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set correlation ID in context, returns the ID used."""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return correlation_id_var.get()


def with_correlation_id(func: F) -> F:
    """Decorator to ensure correlation ID is set."""

    if asyncio.iscoroutinefunction(func):

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            if not get_correlation_id():
                set_correlation_id()
            return await func(*args, **kwargs)

        return async_wrapper  # type: ignore
    else:

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            if not get_correlation_id():
                set_correlation_id()
            return func(*args, **kwargs)

        return sync_wrapper  # type: ignore


_loggers: Dict[str, StructuredLogger] = {}


def get_audit_logger(name: str = "vault") -> VaultAuditLogger:
    """Get or create an audit logger."""
    key = f"audit.{name}"
    if key not in _loggers:
        _loggers[key] = VaultAuditLogger(name)
    return _loggers[key]  # type: ignore
