import logging
import re
from typing import Callable, Union

from .errors import InvalidUserIdentifierError

logger = logging.getLogger(__name__)

UserKeyResolver = Callable[[Union[int, str, None]], int]

_DIGITS = re.compile(r"[0-9]+")


def _string_hash(value: str) -> int:
    # 32-bit signed rolling hash (h * 31 + c), the scheme the user table already keys on
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def resolve_user_key(raw: Union[int, str, None]) -> int:
    """
    Normalize an external user identifier to the integer user key.

    Numeric ids pass through, ids with embedded digits use the concatenated
    digits ("test_user_001" -> 1), anything else falls back to a string hash.
    Not injective: distinct raw ids can map to the same key.
    """
    if raw is None or isinstance(raw, bool):
        raise InvalidUserIdentifierError("userId is required")
    if isinstance(raw, int):
        if raw < 0:
            raise InvalidUserIdentifierError(f"Invalid userId: {raw}")
        return raw

    value = str(raw).strip()
    if not value:
        raise InvalidUserIdentifierError("userId is required")
    if _DIGITS.fullmatch(value):
        return int(value)

    groups = _DIGITS.findall(value)
    if groups:
        key = int("".join(groups))
        logger.info("Resolved userId %r to %s via embedded digits", value, key)
        return key

    key = _string_hash(value)
    logger.warning("userId %r has no digits, using hash key %s", value, key)
    return key
