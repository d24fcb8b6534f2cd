from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Quantize to 2 decimal places, half up."""
    if isinstance(value, float):
        # SQLite aggregates come back as floats; go through str to avoid binary noise
        value = repr(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f"Invalid money amount: {value!r}")


def format_pln(value) -> str:
    return f"{to_money(value)} PLN"
