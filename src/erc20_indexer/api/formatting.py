"""Token amount rendering."""


def format_units(value: int, decimals: int) -> str:
    """Render a raw integer amount as a decimal string with ``decimals`` places.

    Trailing zeros of the fractional part are stripped and the point is
    dropped when nothing remains, so ``format_units(1500, 3) == "1.5"`` and
    ``format_units(2000, 3) == "2"``.
    """
    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    sign = "-" if value < 0 else ""
    digits = str(abs(value))
    if decimals == 0:
        return f"{sign}{digits}"

    digits = digits.rjust(decimals + 1, "0")
    whole, fraction = digits[:-decimals], digits[-decimals:].rstrip("0")
    if not fraction:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{fraction}"
