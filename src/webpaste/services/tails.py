"""Short random tail generation.

Tails are the last path segment of a served link. They are drawn from
ASCII letters only, so links stay visually and syntactically simple.
"""

from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Awaitable, Callable
from typing import Final

from webpaste.errors import TailDrained

logger = logging.getLogger(__name__)

TAIL_ALPHABET: Final[str] = string.ascii_letters

# Width of the urls.tail column
MAX_TAIL_LEN: Final[int] = 64

# Alphabetic paths routed by the app itself
RESERVED_TAILS: Final[frozenset[str]] = frozenset({"health"})


def random_tail(length: int) -> str:
    """Sample a uniformly random alphabetic string of ``length`` characters."""
    return "".join(secrets.choice(TAIL_ALPHABET) for _ in range(length))


def is_valid_tail(tail: str) -> bool:
    return 0 < len(tail) <= MAX_TAIL_LEN and all(c in TAIL_ALPHABET for c in tail)


async def allocate_tail(
    length: int,
    is_taken: Callable[[str], Awaitable[bool]],
    *,
    max_attempts: int,
) -> str:
    """Return the first sampled tail for which ``is_taken`` is false.

    ``is_taken`` must query the same transaction that will insert the tail,
    otherwise two concurrent uploads can both see a candidate as free.
    Candidates in ``RESERVED_TAILS`` count as taken.

    Raises:
        TailDrained: If ``max_attempts`` consecutive candidates were taken.
            The caller should retry with a longer ``length``.
        ValueError: If ``length`` or ``max_attempts`` is not positive.
    """
    if length < 1:
        raise ValueError(f"tail length must be positive, got {length}")
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be positive, got {max_attempts}")

    for attempt in range(1, max_attempts + 1):
        candidate = random_tail(length)
        if candidate in RESERVED_TAILS:
            continue
        if not await is_taken(candidate):
            if attempt > 1:
                logger.debug("Allocated tail of length %d after %d attempts", length, attempt)
            return candidate

    logger.warning("Tail space drained for length %d (%d attempts)", length, max_attempts)
    raise TailDrained(length, max_attempts)
