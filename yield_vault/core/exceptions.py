"""
Custom exceptions for the yield vault.

Exception hierarchy (``kind`` in brackets):
    VaultError (base)
    ├── AmountError
    │   ├── ZeroAmountError [ZeroAmount]
    │   ├── InvalidAmountError [InvalidAmount]
    │   └── ArithmeticOverflowError [Overflow]
    ├── BalanceError
    │   ├── InsufficientSharesError [InsufficientShares]
    │   └── InsufficientBalanceError [InsufficientBalance]
    ├── AccessError
    │   ├── UnauthorizedError [Unauthorized]
    │   ├── PausedError [Paused]
    │   ├── InvalidStateTransitionError [InvalidStateTransition]
    │   └── ReentrantCallError [ReentrantCall]
    ├── AdapterError
    │   ├── AdapterNotHealthyError [AdapterNotHealthy]
    │   ├── AdapterNotFoundError [AdapterNotFound]
    │   ├── AdapterAlreadyRegisteredError [AdapterAlreadyRegistered]
    │   ├── AdapterNotDrainedError [AdapterNotDrained]
    │   └── AdapterFailureError [AdapterFailure]
    ├── AuditError
    │   ├── InvalidRangeError [InvalidRange]
    │   └── DecisionNotFoundError [DecisionNotFound]
    └── InvariantViolationError [InvariantViolation]

Every error carries its taxonomy ``kind`` and whether a retry can succeed.
"""

from typing import Any


class VaultError(Exception):
    """Base exception for all vault errors."""

    default_message = "Vault error occurred"
    kind = "VaultError"
    retryable = False

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.kind
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.append(f"[{self.code}]")
        if self.details:
            parts.append(f"Details: {self.details}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API consumers."""
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


# Amount errors
class AmountError(VaultError):
    """Base exception for amount validation and arithmetic errors."""

    default_message = "Invalid amount"


class ZeroAmountError(AmountError):
    """Amount or share count is zero."""

    default_message = "Amount must be greater than zero"
    kind = "ZeroAmount"


class InvalidAmountError(AmountError):
    """Amount is negative or not an integer."""

    default_message = "Amount must be a non-negative integer"
    kind = "InvalidAmount"


class ArithmeticOverflowError(AmountError):
    """Checked arithmetic left the unsigned range."""

    default_message = "Arithmetic overflow"
    kind = "Overflow"


# Balance errors
class BalanceError(VaultError):
    """Base exception for balance errors."""

    default_message = "Balance error occurred"


class InsufficientSharesError(BalanceError):
    """Account holds fewer shares than requested."""

    default_message = "Insufficient shares"
    kind = "InsufficientShares"


class InsufficientBalanceError(BalanceError):
    """Not enough value available at the source to honor the request."""

    default_message = "Insufficient balance"
    kind = "InsufficientBalance"
    retryable = True


# Access errors
class AccessError(VaultError):
    """Base exception for access and state-machine errors."""

    default_message = "Access error occurred"


class UnauthorizedError(AccessError):
    """Caller does not hold the required role."""

    default_message = "Caller is not authorized"
    kind = "Unauthorized"

    def __init__(
        self,
        message: str | None = None,
        caller: str | None = None,
        required_role: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, details)
        self.caller = caller
        self.required_role = required_role

    def __str__(self) -> str:
        base = super().__str__()
        parts = [base]
        if self.caller:
            parts.append(f"caller={self.caller}")
        if self.required_role:
            parts.append(f"required={self.required_role}")
        return " ".join(parts)


class PausedError(AccessError):
    """Vault is paused."""

    default_message = "Vault is paused"
    kind = "Paused"
    retryable = True


class InvalidStateTransitionError(AccessError):
    """Pause state machine transition not allowed."""

    default_message = "Invalid state transition"
    kind = "InvalidStateTransition"


class ReentrantCallError(AccessError):
    """A mutating operation was entered while another one is in progress."""

    default_message = "Reentrant call into a mutating operation"
    kind = "ReentrantCall"


# Adapter errors
class AdapterError(VaultError):
    """Base exception for strategy adapter errors."""

    default_message = "Adapter error occurred"

    def __init__(
        self,
        message: str | None = None,
        adapter_id: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, details)
        self.adapter_id = adapter_id

    def __str__(self) -> str:
        base = super().__str__()
        if self.adapter_id:
            return f"{base} adapter_id={self.adapter_id}"
        return base


class AdapterNotHealthyError(AdapterError):
    """Adapter reports unhealthy."""

    default_message = "Adapter is not healthy"
    kind = "AdapterNotHealthy"
    retryable = True


class AdapterNotFoundError(AdapterError):
    """Adapter id is not registered."""

    default_message = "Adapter not found"
    kind = "AdapterNotFound"


class AdapterAlreadyRegisteredError(AdapterError):
    """Adapter with the same identity is already registered."""

    default_message = "Adapter already registered"
    kind = "AdapterAlreadyRegistered"


class AdapterNotDrainedError(AdapterError):
    """Adapter still holds value."""

    default_message = "Adapter still holds value and must be drained first"
    kind = "AdapterNotDrained"


class AdapterFailureError(AdapterError):
    """Adapter call failed or returned a failure result."""

    default_message = "Adapter call failed"
    kind = "AdapterFailure"
    retryable = True


# Audit errors
class AuditError(VaultError):
    """Base exception for decision audit log errors."""

    default_message = "Audit log error occurred"


class InvalidRangeError(AuditError):
    """Query range is inverted or exceeds the page cap."""

    default_message = "Invalid range"
    kind = "InvalidRange"


class DecisionNotFoundError(AuditError):
    """Sequence id does not exist."""

    default_message = "Decision not found"
    kind = "DecisionNotFound"


class InvariantViolationError(VaultError):
    """Conservation invariant failed after a mutation."""

    default_message = "Vault invariant violated"
    kind = "InvariantViolation"
