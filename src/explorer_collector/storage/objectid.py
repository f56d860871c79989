"""Store-assigned object identifiers.

Twelve bytes rendered as 24 lowercase hex characters: a 4-byte big-endian
creation time in seconds, 5 random bytes fixed per process and a 3-byte
counter. Ids sort roughly by creation time and are never derived from
chain data.
"""

from __future__ import annotations

import itertools
import os
import time

OBJECT_ID_LENGTH = 24

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_PROCESS_UNIQUE = os.urandom(5)
_counter = itertools.count(int.from_bytes(os.urandom(3), "big"))


def new_object_id(now: float | None = None) -> str:
    """Generate a fresh object id."""
    seconds = int(time.time() if now is None else now) & 0xFFFFFFFF
    count = next(_counter) & 0xFFFFFF
    raw = seconds.to_bytes(4, "big") + _PROCESS_UNIQUE + count.to_bytes(3, "big")
    return raw.hex()


def is_object_id(value: str) -> bool:
    """Whether *value* is a syntactically valid object id."""
    return len(value) == OBJECT_ID_LENGTH and all(c in _HEX_DIGITS for c in value)
