"""Exception hierarchy for webpaste.

Storage failures (``sqlalchemy.exc.SQLAlchemyError``, ``OSError``) are not
wrapped here; they propagate unchanged and are logged at the HTTP edge.
"""

from __future__ import annotations


class WebpasteError(Exception):
    """Base class for every error webpaste raises on purpose."""


class TailDrained(WebpasteError):
    """No unused tail was found within the attempt budget.

    The requested tail length is too short for the current index density;
    the client should ask for a longer one.
    """

    def __init__(self, length: int, attempts: int) -> None:
        super().__init__(f"tail drained: no free tail of length {length} after {attempts} attempts")
        self.length = length
        self.attempts = attempts


class TailNotFound(WebpasteError):
    """The tail is unknown or already expired."""

    def __init__(self, tail: str) -> None:
        super().__init__(f"tail not found: {tail!r}")
        self.tail = tail


class FileTooLarge(WebpasteError):
    """Upload exceeds the configured ``max_file_size``."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"file too large: {size} bytes (limit {limit})")
        self.size = size
        self.limit = limit


class NoFileUploaded(WebpasteError):
    """The request carried neither a ``file`` nor a ``url`` field."""

    def __init__(self) -> None:
        super().__init__("no 'file' or 'url' specified")


class ParseError(WebpasteError):
    """A client-supplied field could not be parsed."""


class TailLenParseError(ParseError):
    """``tail_len`` is not a positive integer."""


class ExpiresParseError(ParseError):
    """``expires`` is neither UNIX seconds nor a duration string."""


class FetchError(WebpasteError):
    """Fetching a remote ``url`` upload failed."""


class InvalidUrl(FetchError):
    """The remote URL is malformed or uses an unsupported scheme."""


class ResponseTooLarge(FetchError):
    """The remote response body exceeds ``max_file_size``."""


class RequestTimeout(FetchError):
    """The remote server did not answer within ``fetch_timeout``."""


class NonSuccessfulStatusCode(FetchError):
    """The remote server answered with a non-2xx status."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"request failed with status code {status_code}")
        self.status_code = status_code
