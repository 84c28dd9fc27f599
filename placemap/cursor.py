"""Opaque pagination cursors for trade-area scans.

A cursor is the sort key of the last record a client received, written as
``"<place_id>,<category>,<sequence_id>"``. It is a resume point only: it is not
signed or encrypted, and the server keeps no state behind it.

Scan order is lexicographic on (place_id, category, sequence_id). Resuming from a
cursor selects rows whose whole key compares greater than the cursor key, so no
row is skipped or repeated across pages.
"""

import logging
import numbers
import re
from typing import Any, NamedTuple, Protocol

logger = logging.getLogger(__name__)

DELIMITER = ","

_INTEGER = re.compile(r"[+-]?[0-9]+")


class CursorKey(NamedTuple):
    """Composite sort key; tuple comparison gives the canonical scan order."""

    place_id: str
    category: int
    sequence_id: int


class HasCursorKey(Protocol):
    @property
    def key(self) -> CursorKey: ...


class MalformedCursorError(ValueError):
    """Cursor token could not be parsed."""

    pass


def key_int(value: Any) -> int:
    """Read an integral key field.

    Accepts integers, floats with no fractional part, and plain decimal digit
    strings. Booleans, fractional values and spellings such as ``"3_0"`` or
    ``" 30"`` are rejected rather than coerced.

    Raises:
        ValueError: If the value is not an exact integer
    """
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(f"non-integral value: {value!r}")
    if isinstance(value, str) and _INTEGER.fullmatch(value):
        return int(value)
    raise ValueError(f"not an integer: {value!r}")


def encode_cursor(value: CursorKey | HasCursorKey) -> str:
    """Encode a sort key (or a record exposing one) as a cursor token.

    Example:
        >>> encode_cursor(CursorKey("A", 30, 2))
        'A,30,2'
    """
    key = value if isinstance(value, CursorKey) else value.key
    return DELIMITER.join((key.place_id, str(key.category), str(key.sequence_id)))


def parse_cursor(token: str) -> CursorKey:
    """Parse a cursor token strictly.

    The place id is opaque and may itself contain the delimiter, so the two
    numeric fields are split off the right-hand end. Surrounding whitespace
    belongs to the place id and is kept.

    Raises:
        MalformedCursorError: If the token has the wrong shape
    """
    parts = token.rsplit(DELIMITER, 2)
    if len(parts) != 3:
        raise MalformedCursorError(f"expected 3 fields, got {len(parts)}")

    place_id, category, sequence_id = parts
    if not place_id:
        raise MalformedCursorError("empty place id")

    try:
        return CursorKey(place_id, key_int(category), key_int(sequence_id))
    except ValueError as e:
        raise MalformedCursorError(f"non-numeric field: {e}") from e


def decode_cursor(token: str | None) -> CursorKey | None:
    """Decode a client-supplied cursor, falling back to start-of-scan.

    A missing or corrupt cursor never fails the request; it degrades to a fresh
    scan from the beginning.

    Example:
        >>> decode_cursor("A,30,2")
        CursorKey(place_id='A', category=30, sequence_id=2)
        >>> decode_cursor("garbage") is None
        True
    """
    if token is None or not token.strip():
        return None

    try:
        return parse_cursor(token)
    except MalformedCursorError as e:
        logger.warning(f"Ignoring malformed cursor {token!r}: {e}")
        return None
