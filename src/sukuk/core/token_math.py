"""Exact arithmetic over wei-scale token amounts.

Token amounts travel through the system as decimal strings of unsigned
integers (up to 78 digits, uint256 scale). Every operation here parses them
into Python ints and, where division is involved, ``fractions.Fraction``;
nothing is ever routed through ``float`` except ``percentage_of``, whose
result is a float by contract.

Empty strings are treated as zero. Non-empty strings that are not plain
base-10 digits raise ``InvalidAmountError``, except in the predicates and
``format_amount``, which never raise.
"""

import re
from decimal import Decimal, InvalidOperation
from fractions import Fraction

from sukuk.services.exceptions import InvalidAmountError

MAX_AMOUNT_DIGITS = 78
WEI_PER_TOKEN = 10**18

_AMOUNT_RE = re.compile(r"[0-9]+")


def parse_amount(amount: str) -> int:
    """Parse a decimal token amount string into an int.

    Args:
        amount: Unsigned base-10 integer string ("" is treated as zero)

    Returns:
        Parsed non-negative integer

    Raises:
        InvalidAmountError: If amount is not a valid unsigned decimal integer
    """
    if amount == "":
        return 0
    if not isinstance(amount, str) or not _AMOUNT_RE.fullmatch(amount):
        raise InvalidAmountError(f"invalid amount: {amount!r}")
    if len(amount.lstrip("0")) > MAX_AMOUNT_DIGITS:
        raise InvalidAmountError(f"amount exceeds {MAX_AMOUNT_DIGITS} digits: {amount!r}")
    return int(amount)


def to_amount(value: int | str | Decimal) -> str:
    """Normalize an int, Decimal, or string into a canonical amount string.

    Used when decoding indexer rows, where Postgres ``numeric(78,0)`` columns
    arrive as ``Decimal``.
    """
    if isinstance(value, bool):
        raise InvalidAmountError(f"invalid amount: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise InvalidAmountError(f"negative amount: {value}")
        return str(value)
    if isinstance(value, Decimal):
        if not value.is_finite() or value != value.to_integral_value() or value < 0:
            raise InvalidAmountError(f"invalid amount: {value}")
        return str(int(value))
    return str(parse_amount(value))


def add(amount1: str, amount2: str) -> str:
    """Add two token amounts."""
    return str(parse_amount(amount1) + parse_amount(amount2))


def subtract(amount1: str, amount2: str) -> str:
    """Subtract amount2 from amount1, clamping negative results to "0"."""
    result = parse_amount(amount1) - parse_amount(amount2)
    return str(result) if result > 0 else "0"


def _as_fraction(value: float | int | str | Decimal | Fraction) -> Fraction:
    try:
        if isinstance(value, float):
            # Same 18-decimal rendering wei math uses elsewhere; exact from here on
            return Fraction(Decimal(f"{value:.18f}"))
        return Fraction(value)
    except (TypeError, ValueError, ZeroDivisionError, OverflowError, InvalidOperation) as e:
        raise InvalidAmountError(f"invalid fraction: {value!r}") from e


def multiply_by_fraction(amount: str, fraction: float | int | str | Decimal | Fraction) -> str:
    """Multiply a token amount by a fraction (e.g. 0.25 for 25%).

    The product is computed as an exact rational and truncated toward zero.

    Args:
        amount: Token amount string
        fraction: Multiplier; floats are converted at 18 decimal places

    Returns:
        Truncated product as an amount string

    Raises:
        InvalidAmountError: If amount is malformed or fraction is negative/invalid
    """
    value = parse_amount(amount)
    multiplier = _as_fraction(fraction)
    if multiplier < 0:
        raise InvalidAmountError(f"negative fraction: {fraction!r}")
    product = value * multiplier
    return str(product.numerator // product.denominator)


def compare(amount1: str, amount2: str) -> int:
    """Compare two token amounts.

    Returns:
        -1 if amount1 < amount2, 0 if equal, 1 if amount1 > amount2
    """
    a = parse_amount(amount1)
    b = parse_amount(amount2)
    return (a > b) - (a < b)


def is_zero(amount: str) -> bool:
    """Check whether an amount is zero. Invalid amounts are treated as zero."""
    try:
        return parse_amount(amount) == 0
    except InvalidAmountError:
        return True


def is_positive(amount: str) -> bool:
    """Check whether an amount is strictly positive. Invalid amounts are not."""
    try:
        return parse_amount(amount) > 0
    except InvalidAmountError:
        return False


def sum_amounts(amounts: list[str]) -> str:
    """Sum a list of token amounts. An empty list sums to "0"."""
    return str(sum(parse_amount(a) for a in amounts))


def percentage_of(amount1: str, amount2: str) -> float:
    """Return amount1 / amount2 as a float in [0.0, ...).

    Division by zero (or an empty denominator) is defined as 0.0.
    """
    denominator = parse_amount(amount2)
    if denominator == 0:
        return 0.0
    return float(Fraction(parse_amount(amount1), denominator))


def format_amount(amount: str) -> str:
    """Format an amount with thousands separators for display.

    Existing commas and spaces are stripped first. Strings that are still
    not valid amounts are returned unchanged.
    """
    if amount == "" or amount == "0":
        return "0"
    cleaned = amount.replace(",", "").replace(" ", "")
    try:
        value = parse_amount(cleaned)
    except InvalidAmountError:
        return amount
    return f"{value:,}"
