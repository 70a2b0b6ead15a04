"""
DECIMAL PRECISION & FINANCIAL UTILITIES

This module provides:
1. Decimal precision lock (2-decimal places)
2. Safe financial calculations
3. Value validation (no negative amounts)
4. Rounding at calculation boundary only
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union
import logging

from finance_core.errors import ValidationError

logger = logging.getLogger(__name__)

# Precision configuration
DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')
ZERO = Decimal('0')
HUNDRED = Decimal('100')

Numeric = Union[float, int, str, Decimal]


class FinancialPrecisionError(ValidationError):
    """Raised when a value cannot be read as a number"""
    pass


class NegativeValueError(ValidationError):
    """Raised when a negative (or non-positive) financial value is detected"""
    pass


def to_decimal(value: Numeric, field_name: str = "value") -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate calculations.
    """
    if isinstance(value, bool):
        raise FinancialPrecisionError(f"'{field_name}' must be a number, got a boolean", field=field_name)
    if isinstance(value, Decimal):
        decimal_value = value
    elif isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        decimal_value = Decimal(str(value))
    elif isinstance(value, str):
        try:
            decimal_value = Decimal(value.strip())
        except InvalidOperation:
            raise FinancialPrecisionError(f"'{field_name}' is not a number: {value!r}", field=field_name)
    else:
        raise FinancialPrecisionError(f"Cannot convert {type(value).__name__} to Decimal", field=field_name)

    if not decimal_value.is_finite():
        raise FinancialPrecisionError(f"'{field_name}' must be a finite number", field=field_name)
    return decimal_value


def round_financial(value: Numeric) -> Decimal:
    """
    Round a value to 2 decimal places, half up.
    This should be called ONLY at calculation boundaries.
    """
    return to_decimal(value).quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def validate_non_negative(value: Numeric, field_name: str) -> Decimal:
    """
    Validate that a financial value is not negative.
    Raises NegativeValueError if validation fails.
    """
    decimal_value = to_decimal(value, field_name)
    if decimal_value < ZERO:
        raise NegativeValueError(
            f"Financial value '{field_name}' cannot be negative: {value}",
            field=field_name
        )
    return decimal_value


def validate_positive(value: Numeric, field_name: str) -> Decimal:
    """
    Validate that a financial value is strictly positive (> 0).
    Raises NegativeValueError if validation fails.
    """
    decimal_value = to_decimal(value, field_name)
    if decimal_value <= ZERO:
        raise NegativeValueError(
            f"Financial value '{field_name}' must be positive: {value}",
            field=field_name
        )
    return decimal_value


def safe_multiply(a: Numeric, b: Numeric) -> Decimal:
    """Safe multiplication preserving precision"""
    return to_decimal(a) * to_decimal(b)


def safe_subtract(a: Numeric, b: Numeric) -> Decimal:
    """Safe subtraction preserving precision"""
    return to_decimal(a) - to_decimal(b)


def safe_add(*values: Numeric) -> Decimal:
    """Safe addition of multiple values"""
    result = ZERO
    for v in values:
        result += to_decimal(v)
    return result


def calculate_percentage(amount: Numeric, percentage: Numeric) -> Decimal:
    """
    Calculate percentage of an amount.
    Example: calculate_percentage(1000, 10) = 100
    """
    return safe_multiply(amount, percentage) / HUNDRED


def convert_to_company_currency(amount: Numeric, exchange_rate: Numeric) -> Decimal:
    """
    Fixed-multiplier conversion into the company currency.

    amount_company_currency = amount * exchange_rate, rounded at the boundary.
    """
    validate_positive(exchange_rate, 'exchange_rate')
    return round_financial(safe_multiply(amount, exchange_rate))
