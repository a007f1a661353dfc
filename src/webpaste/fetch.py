"""Fetching remote content for ``url`` uploads."""

from __future__ import annotations

import logging

import httpx

from webpaste.errors import InvalidUrl, NonSuccessfulStatusCode, RequestTimeout, ResponseTooLarge

logger = logging.getLogger(__name__)


async def fetch_url(
    url: str,
    *,
    max_size: int,
    timeout: float,
    client: httpx.AsyncClient | None = None,
) -> bytes:
    """Download ``url`` and return the body.

    The body is streamed and the download aborted as soon as it exceeds
    ``max_size`` bytes.

    Raises:
        InvalidUrl: Malformed URL or a scheme other than http/https.
        ResponseTooLarge: Body larger than ``max_size``.
        RequestTimeout: No complete response within ``timeout`` seconds.
        NonSuccessfulStatusCode: Server answered with a non-2xx status.
        httpx.HTTPError: Any other transport failure.
    """
    try:
        parsed = httpx.URL(url.strip())
    except httpx.InvalidURL as e:
        raise InvalidUrl(f"url is invalid: {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InvalidUrl(f"url is invalid: {url!r}")

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(follow_redirects=True)

    try:
        async with client.stream("GET", parsed, timeout=timeout) as response:
            if not response.is_success:
                raise NonSuccessfulStatusCode(response.status_code)

            declared = response.headers.get("content-length")
            if declared is not None and declared.isdigit() and int(declared) > max_size:
                raise ResponseTooLarge(f"response too large: {declared} bytes")

            chunks: list[bytes] = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > max_size:
                    raise ResponseTooLarge(f"response too large: over {max_size} bytes")
                chunks.append(chunk)
    except httpx.TimeoutException as e:
        raise RequestTimeout("request timeout") from e
    finally:
        if owns_client:
            await client.aclose()

    logger.debug("Fetched %s (%d bytes)", parsed, received)
    return b"".join(chunks)
