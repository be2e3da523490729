"""
Centralized parsing helpers for addresses and serial settings.

The CLI imports these rather than re-implementing them.
"""

from typing import Optional

from picboot.models.profiles import MAX_BAUD, MIN_BAUD, AddressRange


def parse_address(value: Optional[str]) -> Optional[int]:
    """
    Parse an address from string, supporting multiple formats.

    Accepts:
        - Decimal: "4096"
        - Hex with 0x prefix: "0x1000" or "0X1000"
        - Hex with h suffix: "1000h" or "1000H"
        - None or empty for "not given"

    Raises:
        ValueError: If value cannot be parsed or is negative.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            result = int(value, 16)
        elif value.lower().endswith("h"):
            result = int(value[:-1], 16)
        else:
            result = int(value)
    except ValueError:
        raise ValueError(
            f"Invalid address '{value}'. Use decimal (4096), hex (0x1000), or suffix (1000h)."
        )
    if result < 0:
        raise ValueError(f"Invalid address '{value}'. Addresses cannot be negative.")
    return result


def parse_range(first: str, last: str) -> AddressRange:
    """
    Parse an inclusive address range.

    Raises:
        ValueError: If either bound is invalid or first > last
    """
    start = parse_address(first)
    end = parse_address(last)
    if start is None or end is None:
        raise ValueError("Both range bounds are required.")
    if start > end:
        raise ValueError(f"Bad memory region: 0x{start:X} .. 0x{end:X}")
    return AddressRange(start, end)


def parse_baud(value: Optional[str]) -> Optional[int]:
    """
    Parse a baud rate in the range 300 .. 1000000.

    Raises:
        ValueError: If value is not a number in range
    """
    if value is None or not str(value).strip():
        return None
    try:
        baud = int(str(value).strip())
    except ValueError:
        baud = 0
    if baud < MIN_BAUD or baud > MAX_BAUD:
        raise ValueError(f"Speed must be a number <{MIN_BAUD} .. {MAX_BAUD}>")
    return baud
