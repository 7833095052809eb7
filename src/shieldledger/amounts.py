"""
ShieldLedger Fixed-Point Amounts

Monetary values are plain ints in token base units (scaled by the token's
decimal count, 6 for USDC-style tokens). All arithmetic that touches ledger
fields goes through the checked helpers below, which fail closed by raising
AmountOverflowError instead of wrapping or going negative.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation

from .exceptions import AmountOverflowError, InvalidAmountError

U32_MAX = 2**32 - 1
U256_MAX = 2**256 - 1

BPS_DENOMINATOR = 10_000
MAX_YIELD_RATE_BPS = 10_000
DEFAULT_TOKEN_DECIMALS = 6


def _require_int(value: object, field: str) -> int:
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(
            f"{field} must be an integer amount, got {type(value).__name__}",
            details={"field": field},
        )
    return value


def checked_add(a: int, b: int, field: str = "amount", limit: int = U256_MAX) -> int:
    result = _require_int(a, field) + _require_int(b, field)
    if result > limit:
        raise AmountOverflowError(
            f"{field} overflow: {a} + {b} exceeds {limit}",
            details={"field": field, "limit": str(limit)},
        )
    if result < 0:
        raise AmountOverflowError(f"{field} underflow: {a} + {b} < 0", details={"field": field})
    return result


def checked_sub(a: int, b: int, field: str = "amount") -> int:
    result = _require_int(a, field) - _require_int(b, field)
    if result < 0:
        raise AmountOverflowError(
            f"{field} underflow: {a} - {b} < 0",
            details={"field": field},
        )
    return result


def checked_mul(a: int, b: int, field: str = "amount", limit: int = U256_MAX) -> int:
    result = _require_int(a, field) * _require_int(b, field)
    if result > limit or result < 0:
        raise AmountOverflowError(
            f"{field} overflow: {a} * {b} outside [0, {limit}]",
            details={"field": field, "limit": str(limit)},
        )
    return result


def require_positive(amount: object, field: str = "amount") -> int:
    """Validate a caller-supplied amount: integer, > 0, fits in u256."""
    value = _require_int(amount, field)
    if value <= 0:
        raise InvalidAmountError(f"{field} must be greater than zero", details={"field": field, "value": value})
    if value > U256_MAX:
        raise InvalidAmountError(f"{field} exceeds u256", details={"field": field})
    return value


def validate_bps(bps: object) -> int:
    value = _require_int(bps, "yield_rate_bps")
    if value < 0 or value > MAX_YIELD_RATE_BPS:
        raise InvalidAmountError(
            f"yield_rate_bps must be within 0..{MAX_YIELD_RATE_BPS}",
            details={"value": value},
        )
    return value


def apply_bps(amount: int, bps: int, periods: int = 1) -> int:
    """
    amount * bps * periods / 10000, floored.

    Intermediate products are checked against u256 like every ledger field.
    """
    product = checked_mul(amount, bps, "yield")
    product = checked_mul(product, periods, "yield")
    return product // BPS_DENOMINATOR


# =============================================================================
# Display helpers
# =============================================================================

def parse_token_amount(value: str, decimals: int = DEFAULT_TOKEN_DECIMALS) -> int:
    """
    Parse a human decimal string into base units.

    Excess fractional digits are truncated, not rounded.

    >>> parse_token_amount("1.5")
    1500000
    """
    if value is None or str(value).strip() == "":
        return 0
    text = str(value).strip()
    if text.startswith("-"):
        raise InvalidAmountError(f"Negative amount: {text}")
    whole, _, fraction = text.partition(".")
    if not (whole or fraction) or not (whole or "0").isdigit() or (fraction and not fraction.isdigit()):
        raise InvalidAmountError(f"Malformed token amount: {text!r}")
    padded = (fraction + "0" * decimals)[:decimals]
    return int((whole or "0") + padded) if decimals else int(whole or "0")


def format_token_amount(value: int, decimals: int = DEFAULT_TOKEN_DECIMALS, display_decimals: int = 2) -> str:
    """
    Format base units as a decimal string, truncating extra digits.

    >>> format_token_amount(1_234_567)
    '1.23'
    """
    quotient, remainder = divmod(int(value), 10**decimals)
    if display_decimals == 0:
        return str(quotient)
    fraction = str(remainder).rjust(decimals, "0")[:display_decimals].ljust(display_decimals, "0")
    return f"{quotient}.{fraction}"


def format_basis_points(bps: int) -> str:
    """
    >>> format_basis_points(525)
    '5.25%'
    """
    try:
        return f"{(Decimal(bps) / 100).quantize(Decimal('0.01'))}%"
    except InvalidOperation as e:
        raise InvalidAmountError(f"Invalid basis points: {bps!r}") from e
