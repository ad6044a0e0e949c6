"""
Money Handling Module

Fixed-point amounts with two fraction digits, parsing of user input and
display formatting. NEVER uses float for monetary values.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Optional, Union
import re

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

MONEY_PLACES = 2
CENT = Decimal('0.01')
ZERO = Decimal('0.00')
# Largest value a DECIMAL(12,2) column holds
MAX_AMOUNT = Decimal('9999999999.99')

# Longest first so "Rs." wins over "Rs"
CURRENCY_PREFIXES = ("₹", "Rs.", "Rs", "INR")
_PLAIN_DECIMAL = re.compile(r'^[+-]?(\d+(\.\d+)?|\.\d+)$')
# Western 1,234,567 or en-IN 12,34,567 grouping
_GROUPED_PATTERN = re.compile(r'^(\d{1,3}(,\d{3})+|\d{1,2}(,\d{2})*,\d{3})$')

AmountLike = Union[Decimal, str, int, float]


def to_money(value: AmountLike) -> Decimal:
    """
    Convert a value to a two-place Decimal, rounding half up.

    Used for values that come from storage or configuration, which are
    already trusted to be money.
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: AmountLike) -> Decimal:
    """
    Parse a caller-supplied transaction amount.

    Accepts Decimal, int, float (via its string form) and strings that may
    carry a currency symbol or thousands separators ("₹1,500.00").

    Returns:
        Decimal quantized to two places

    Raises:
        ValidationError: If the value is not a finite, strictly positive
            amount with at most two fraction digits
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError("Amount must be a number")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = _decimal_or_fail(str(value))
    elif isinstance(value, str):
        amount = decimal_from_string(value)
    else:
        raise ValidationError(f"Unsupported amount type: {type(value).__name__}")

    if not amount.is_finite():
        raise ValidationError("Amount must be a finite number")

    if amount <= 0:
        raise ValidationError("Amount must be greater than 0")

    if amount > MAX_AMOUNT:
        raise ValidationError(f"Amount cannot exceed {MAX_AMOUNT}")

    if amount.as_tuple().exponent < -MONEY_PLACES and amount != amount.quantize(CENT):
        raise ValidationError(f"Amount cannot have more than {MONEY_PLACES} decimal places")

    return amount.quantize(CENT)


def parse_balance(value: Optional[AmountLike]) -> Decimal:
    """
    Parse a non-negative balance such as an opening balance.
    Empty input means zero.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return ZERO
    if isinstance(value, str):
        value = decimal_from_string(value)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        value = _decimal_or_fail(str(value))
    if isinstance(value, Decimal) and value.is_finite():
        if value == 0:
            return ZERO
        if value < 0:
            raise ValidationError("Balance cannot be negative")
    return parse_amount(value)


def decimal_from_string(value: str) -> Decimal:
    """
    Convert a user-entered amount string to Decimal.

    Accepts an optional sign, an optional leading currency symbol and
    thousands separators in western (1,234,567) or en-IN (12,34,567)
    positions. Anything else, including exponents and stray characters,
    is rejected rather than cleaned up.

    Raises:
        ValidationError: If the string is not a plain decimal number
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Amount must be a non-empty string")

    text = value.strip()
    sign = ""
    if text[0] in "+-":
        sign, text = text[0], text[1:]

    for prefix in CURRENCY_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix):].lstrip()
            break

    integer_part, dot, fraction_part = text.partition(".")
    if "," in integer_part:
        if not _GROUPED_PATTERN.match(integer_part):
            raise ValidationError(f"Cannot convert '{value}' to an amount")
        integer_part = integer_part.replace(",", "")

    clean_value = f"{sign}{integer_part}{dot}{fraction_part}"
    if not _PLAIN_DECIMAL.match(clean_value):
        raise ValidationError(f"Cannot convert '{value}' to an amount")

    return _decimal_or_fail(clean_value, original=value)


def _decimal_or_fail(text: str, original: Optional[str] = None) -> Decimal:
    try:
        return Decimal(text)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Cannot convert '{original or text}' to an amount")


def signed_amount(amount: Decimal, is_credit: bool) -> Decimal:
    """Signed delta applied to a balance"""
    return amount if is_credit else -amount


def group_indian(integer_digits: str) -> str:
    """Group digits the en-IN way: 12,34,567"""
    if len(integer_digits) <= 3:
        return integer_digits
    head, tail = integer_digits[:-3], integer_digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_currency(amount: Decimal, symbol: str = "₹") -> str:
    """
    Format for display, e.g. ``₹1,23,456.78`` or ``-₹50.00``.
    """
    amount = to_money(amount)
    sign = "-" if amount < 0 else ""
    integer_part, fraction_part = f"{abs(amount):.{MONEY_PLACES}f}".split(".")
    return f"{sign}{symbol}{group_indian(integer_part)}.{fraction_part}"
