"""Retention policy: how long an upload stays resolvable."""

from __future__ import annotations

from typing import TYPE_CHECKING

from webpaste.errors import ExpiresParseError
from webpaste.utils.durations import MAX_SECONDS, parse_duration

if TYPE_CHECKING:
    from webpaste.config import Settings


def default_retention(
    size: int,
    *,
    min_expire: int,
    max_expire: int,
    max_file_size: int,
) -> int:
    """Default retention in seconds for a file of ``size`` bytes.

    Convex cubic interpolation in ``size / max_file_size`` between
    ``max_expire`` (empty file) and ``min_expire`` (``max_file_size``).
    The drop is steepest for small sizes and flattens out near the limit::

        min + (min - max) * (size / max_file_size - 1) ** 3

    The result is truncated to whole seconds and clamped into
    ``[min_expire, max_expire]``.
    """
    ratio = size / max_file_size
    retention = int(min_expire + (min_expire - max_expire) * (ratio - 1.0) ** 3)
    return max(min_expire, min(max_expire, retention))


def resolve_expires_at(expires: str | None, size: int, now: int, settings: Settings) -> int:
    """Turn the client's ``expires`` field into an absolute UNIX timestamp.

    - ``None``: ``now`` plus the default retention for ``size``.
    - All digits: already an absolute timestamp in seconds.
    - Anything else: a relative duration such as ``"1h 30m"``.

    Raises:
        ExpiresParseError: If ``expires`` is neither form, or the result
            does not fit a signed 64-bit timestamp.
    """
    if expires is None:
        return now + default_retention(
            size,
            min_expire=settings.min_expire_duration,
            max_expire=settings.max_expire_duration,
            max_file_size=settings.max_file_size,
        )

    expires = expires.strip()
    if expires.isascii() and expires.isdigit():
        expires_at = int(expires)
    else:
        try:
            expires_at = now + parse_duration(expires)
        except ValueError as e:
            raise ExpiresParseError(str(e)) from e

    if expires_at > MAX_SECONDS:
        raise ExpiresParseError(f"expires out of range: {expires!r}")
    return expires_at
