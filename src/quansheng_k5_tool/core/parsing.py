"""
Centralized parsing helpers for addresses and hex strings.

The CLI and the exporters import these rather than re-implementing them.
"""

import re
from typing import Optional


def parse_address(value: Optional[str]) -> Optional[int]:
    """
    Parse an address or length from string, supporting multiple formats.

    Accepts:
        - Decimal: "7872"
        - Hex with 0x prefix: "0x1EC0" or "0X1EC0"
        - Hex with h suffix: "1EC0h" or "1EC0H"
        - None or blank for "not given"

    Returns:
        Parsed integer, or None if value is None or empty.

    Raises:
        ValueError: If value cannot be parsed.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            return int(value, 16)
        if value.lower().endswith("h"):
            return int(value[:-1], 16)
        return int(value)
    except ValueError:
        raise ValueError(
            f"Invalid address '{value}'. Use decimal (7872), hex (0x1EC0), or suffix (1EC0h)."
        )


_HEX_SEPARATORS = re.compile(r"[\s,:\-]+")


def parse_hex(text: str) -> bytes:
    """
    Parse a hex string into bytes.

    Tolerates spaces, commas, colons or dashes between bytes, a leading
    "0x" on each byte, and no separators at all ("3C141E").

    Raises:
        ValueError: If the text is not valid hex
    """
    tokens = [t for t in _HEX_SEPARATORS.split(text.strip()) if t]
    cleaned = "".join(t[2:] if t.lower().startswith("0x") else t for t in tokens)
    if len(cleaned) % 2:
        raise ValueError(f"Hex string has an odd number of digits: '{text}'")
    try:
        return bytes.fromhex(cleaned)
    except ValueError:
        raise ValueError(f"Invalid hex string: '{text}'")
