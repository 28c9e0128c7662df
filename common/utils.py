"""
common.utils

Utility helper functions.
"""
import logging
import re
from typing import Optional, Union

logger = logging.getLogger(__name__)

_UINT_RE = re.compile(r"[0-9]+")


def parse_uint(value) -> Optional[int]:
    """
    Non-negative base-10 integer from an upstream field, or None.

    Only ASCII digit strings are accepted; "1_000", "+5" and non-ASCII
    digits, which int() would take, are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if not isinstance(value, str):
        return None
    s = value.strip(" \t\r\n")
    if not _UINT_RE.fullmatch(s):
        return None
    return int(s)


def parse_token_value(value: Union[str, int, None], decimals: int = 18) -> float:
    """
    Scale an integer amount in smallest units down by 10**decimals.

    The division is split into quotient and remainder over Python ints so
    amounts above 2**53 keep their precision. Malformed input logs an error
    and yields 0.0.
    """
    try:
        amount = parse_uint(value)
        if amount is None:
            raise ValueError("not a base-10 integer")
        divisor = 10 ** int(decimals)
        quotient, remainder = divmod(amount, divisor)
        return float(quotient) + remainder / divisor
    except (TypeError, ValueError, OverflowError) as e:
        logger.error("Error parsing transaction value %r (decimals=%r): %s", value, decimals, e)
        return 0.0


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive hex address comparison; missing addresses never match."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()
