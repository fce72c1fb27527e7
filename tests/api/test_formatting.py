"""Tests for token amount rendering."""

import pytest

from erc20_indexer.api.formatting import format_units


@pytest.mark.parametrize(
    ("value", "decimals", "expected"),
    [
        (0, 18, "0"),
        (1, 18, "0.000000000000000001"),
        (10**18, 18, "1"),
        (15 * 10**17, 18, "1.5"),
        (123456789012345678901234567890, 18, "123456789012.34567890123456789"),
        (2**256 - 1, 18, "115792089237316195423570985008687907853269984665640564039457.584007913129639935"),
        (1500, 3, "1.5"),
        (2000, 3, "2"),
        (42, 0, "42"),
        (-1500, 3, "-1.5"),
    ],
)
def test_format_units(value: int, decimals: int, expected: str) -> None:
    assert format_units(value, decimals) == expected


def test_rejects_negative_decimals() -> None:
    with pytest.raises(ValueError):
        format_units(1, -1)
