"""
Core module for the yield vault.

Provides logging utilities, the error taxonomy and checked arithmetic.
"""

from .checked import (
    MAX_UINT256,
    checked_add,
    checked_mul,
    checked_sub,
    mul_div_floor,
    require_positive,
    require_uint,
)
from .exceptions import (
    AdapterAlreadyRegisteredError,
    AdapterError,
    AdapterFailureError,
    AdapterNotDrainedError,
    AdapterNotFoundError,
    AdapterNotHealthyError,
    ArithmeticOverflowError,
    DecisionNotFoundError,
    InsufficientBalanceError,
    InsufficientSharesError,
    InvalidAmountError,
    InvalidRangeError,
    InvalidStateTransitionError,
    InvariantViolationError,
    PausedError,
    ReentrantCallError,
    UnauthorizedError,
    VaultError,
    ZeroAmountError,
)
from .logger import configure_logging, get_logger
from .structured_logging import (
    EventType,
    LogChannel,
    LogContext,
    StructuredLogger,
    VaultAuditLogger,
    get_audit_logger,
    get_correlation_id,
    set_correlation_id,
    with_correlation_id,
)

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "StructuredLogger",
    "VaultAuditLogger",
    "get_audit_logger",
    "LogChannel",
    "EventType",
    "LogContext",
    "set_correlation_id",
    "get_correlation_id",
    "with_correlation_id",
    # Arithmetic
    "MAX_UINT256",
    "checked_add",
    "checked_sub",
    "checked_mul",
    "mul_div_floor",
    "require_uint",
    "require_positive",
    # Errors
    "VaultError",
    "ZeroAmountError",
    "InvalidAmountError",
    "ArithmeticOverflowError",
    "InsufficientSharesError",
    "InsufficientBalanceError",
    "UnauthorizedError",
    "PausedError",
    "InvalidStateTransitionError",
    "ReentrantCallError",
    "AdapterError",
    "AdapterNotHealthyError",
    "AdapterNotFoundError",
    "AdapterAlreadyRegisteredError",
    "AdapterNotDrainedError",
    "AdapterFailureError",
    "InvalidRangeError",
    "DecisionNotFoundError",
    "InvariantViolationError",
]
