"""
Tests for fixed-point amount helpers.

Validates:
- Checked arithmetic fails closed on overflow/underflow
- Caller-supplied amounts must be positive integers
- Yield-rate bounds
- Display parsing and formatting
"""
import pytest

from shieldledger.amounts import (
    U256_MAX,
    U32_MAX,
    apply_bps,
    checked_add,
    checked_mul,
    checked_sub,
    format_basis_points,
    format_token_amount,
    parse_token_amount,
    require_positive,
    validate_bps,
)
from shieldledger.exceptions import AmountOverflowError, InvalidAmountError


# ============================================================================
# CHECKED ARITHMETIC
# ============================================================================

def test_checked_add_within_range():
    assert checked_add(2, 3) == 5


def test_checked_add_overflow_u256():
    with pytest.raises(AmountOverflowError) as exc_info:
        checked_add(U256_MAX, 1, "total_funds")

    assert exc_info.value.details["field"] == "total_funds"


def test_checked_add_respects_custom_limit():
    assert checked_add(U32_MAX - 1, 1, "total_stakers", U32_MAX) == U32_MAX
    with pytest.raises(AmountOverflowError):
        checked_add(U32_MAX, 1, "total_stakers", U32_MAX)


def test_checked_sub_underflow():
    with pytest.raises(AmountOverflowError):
        checked_sub(5, 6, "stake")


def test_checked_sub_to_zero():
    assert checked_sub(5, 5) == 0


def test_checked_mul_overflow():
    with pytest.raises(AmountOverflowError):
        checked_mul(U256_MAX, 2)


def test_bool_is_not_an_amount():
    with pytest.raises(InvalidAmountError):
        checked_add(True, 1)


# ============================================================================
# CALLER AMOUNTS
# ============================================================================

@pytest.mark.parametrize("value", [0, -1])
def test_require_positive_rejects_non_positive(value):
    with pytest.raises(InvalidAmountError):
        require_positive(value)


@pytest.mark.parametrize("value", [1.5, "10", None, True])
def test_require_positive_rejects_non_integers(value):
    with pytest.raises(InvalidAmountError):
        require_positive(value)


def test_require_positive_rejects_above_u256():
    with pytest.raises(InvalidAmountError):
        require_positive(U256_MAX + 1)


def test_require_positive_accepts_u256_max():
    assert require_positive(U256_MAX) == U256_MAX


# ============================================================================
# YIELD RATE
# ============================================================================

@pytest.mark.parametrize("bps", [0, 1, 500, 10_000])
def test_validate_bps_accepts_range(bps):
    assert validate_bps(bps) == bps


@pytest.mark.parametrize("bps", [-1, 10_001])
def test_validate_bps_rejects_out_of_range(bps):
    with pytest.raises(InvalidAmountError):
        validate_bps(bps)


def test_apply_bps_floors():
    # 1_000_001 * 500 / 10000 = 50_000.05
    assert apply_bps(1_000_001, 500) == 50_000


def test_apply_bps_multiple_periods():
    assert apply_bps(1_000_000, 500, periods=3) == 150_000


def test_apply_bps_zero_periods():
    assert apply_bps(1_000_000, 500, periods=0) == 0


# ============================================================================
# DISPLAY
# ============================================================================

def test_parse_token_amount():
    assert parse_token_amount("1.5") == 1_500_000
    assert parse_token_amount("100") == 100_000_000
    assert parse_token_amount(".25") == 250_000


def test_parse_token_amount_truncates_excess_digits():
    assert parse_token_amount("1.1234569") == 1_123_456


def test_parse_token_amount_empty_is_zero():
    assert parse_token_amount("") == 0


@pytest.mark.parametrize("text", ["abc", "1.2.3", "1,5", "-1"])
def test_parse_token_amount_rejects_malformed(text):
    with pytest.raises(InvalidAmountError):
        parse_token_amount(text)


def test_format_token_amount_truncates():
    assert format_token_amount(1_234_567) == "1.23"
    assert format_token_amount(999_999) == "0.99"


def test_format_token_amount_whole():
    assert format_token_amount(80_000_000, display_decimals=0) == "80"


def test_format_basis_points():
    assert format_basis_points(525) == "5.25%"
    assert format_basis_points(10_000) == "100.00%"
    assert format_basis_points(0) == "0.00%"
