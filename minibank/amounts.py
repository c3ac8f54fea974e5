"""
Monetary Amount Module

All balances and transaction amounts are Decimal values with two fractional
digits. NEVER uses float for monetary values; floats coming from JSON are
converted through their string form.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Any
import re

from .errors import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28

AMOUNT_PRECISION = 2
ZERO = Decimal("0.00")
_QUANTUM = Decimal("0.1") ** AMOUNT_PRECISION

# Largest accepted amount and balance; both stay well inside the context precision
MAX_AMOUNT = Decimal("999999999999999.99")
MAX_BALANCE = Decimal("99999999999999999999.99")

# Whitespace and currency symbols; anything else must be part of the number
_NOISE = re.compile(r'[\s$€£¥]')


def quantize(value: Decimal) -> Decimal:
    """
    Round a Decimal to amount precision (half up)

    Raises:
        InvalidAmount: If the value has too many digits to be represented
    """
    try:
        return value.quantize(_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount("Amount is too large", details={"amount": str(value)})


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number ("1,250.50", "$ 10", "12,5", "1e2")

    Returns:
        Decimal value

    Raises:
        InvalidAmount: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise InvalidAmount("Amount must be a non-empty string")

    clean_value = _NOISE.sub('', value)

    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - assume comma is thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Thousands separator
            clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise InvalidAmount(f"Cannot convert '{value}' to an amount")


def to_amount(value: Any) -> Decimal:
    """
    Convert caller input to a quantized Decimal amount

    Accepts Decimal, int, float and str. Does not check the sign; callers
    decide whether zero or negative values are acceptable.

    Raises:
        InvalidAmount: For booleans, None, unparseable, non-finite or oversized values
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmount("Amount must be a number")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        amount = decimal_from_string(value)
    else:
        raise InvalidAmount(f"Unsupported amount type: {type(value).__name__}")

    if not amount.is_finite():
        raise InvalidAmount("Amount must be a finite number")

    if abs(amount) > MAX_AMOUNT:
        raise InvalidAmount(
            "Amount exceeds the maximum allowed",
            details={"amount": str(amount), "maximum": str(MAX_AMOUNT)}
        )

    return quantize(amount)


def to_positive_amount(value: Any) -> Decimal:
    """Convert caller input to an amount that is strictly greater than zero"""
    amount = to_amount(value)
    if amount <= ZERO:
        raise InvalidAmount(details={"amount": str(amount)})
    return amount
