"""
Checked unsigned integer arithmetic.

Amounts and shares are integers in [0, MAX_UINT256]. Any result outside that
range raises ArithmeticOverflowError instead of wrapping or going negative.
"""

from .exceptions import ArithmeticOverflowError, InvalidAmountError, ZeroAmountError

MAX_UINT256 = 2**256 - 1


def require_uint(value: int, name: str = "amount") -> int:
    """
    Validate an unsigned integer input.

    Raises:
        InvalidAmountError: If value is not an int (bools rejected) or negative
        ArithmeticOverflowError: If value exceeds MAX_UINT256
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(
            f"{name} must be an integer, got {type(value).__name__}",
            details={name: repr(value)},
        )
    if value < 0:
        raise InvalidAmountError(f"{name} must be non-negative", details={name: value})
    if value > MAX_UINT256:
        raise ArithmeticOverflowError(f"{name} exceeds uint256", details={name: value})
    return value


def require_positive(value: int, name: str = "amount") -> int:
    """Validate an unsigned integer that must also be non-zero."""
    require_uint(value, name)
    if value == 0:
        raise ZeroAmountError(f"{name} must be greater than zero")
    return value


def _bounded(result: int, op: str, a: int, b: int) -> int:
    if result < 0 or result > MAX_UINT256:
        raise ArithmeticOverflowError(
            f"{op} out of range", details={"a": a, "b": b, "op": op}
        )
    return result


def checked_add(a: int, b: int) -> int:
    return _bounded(a + b, "add", a, b)


def checked_sub(a: int, b: int) -> int:
    return _bounded(a - b, "sub", a, b)


def checked_mul(a: int, b: int) -> int:
    return _bounded(a * b, "mul", a, b)


def mul_div_floor(a: int, b: int, denominator: int) -> int:
    """
    Compute floor(a * b / denominator) exactly.

    The intermediate product must itself fit in uint256, matching the
    behaviour of a checked on-chain implementation.

    Raises:
        ArithmeticOverflowError: On overflow or a zero denominator
    """
    if denominator == 0:
        raise ArithmeticOverflowError("division by zero", details={"a": a, "b": b})
    return checked_mul(a, b) // denominator
