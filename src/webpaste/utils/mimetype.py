"""Content-type sniffing for uploads.

Detects a MIME type from the leading bytes of the content, with a text
fallback. The result is computed once per upload and cached in the url
row, so access never sniffs again.

Detection strategy (in priority order):
1. Magic bytes - container headers (RIFF, ISO BMFF) and file signatures
2. Content analysis - JSON parsing, text decodability
3. ``application/octet-stream``
"""

from __future__ import annotations

import json
from typing import Final

OCTET_STREAM: Final[str] = "application/octet-stream"

# (magic_bytes, offset, mimetype)
_MAGIC_SIGNATURES: Final[list[tuple[bytes, int, str]]] = [
    # Images
    (b"\xff\xd8\xff", 0, "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", 0, "image/png"),
    (b"GIF87a", 0, "image/gif"),
    (b"GIF89a", 0, "image/gif"),
    (b"BM", 0, "image/bmp"),
    (b"II*\x00", 0, "image/tiff"),
    (b"MM\x00*", 0, "image/tiff"),
    (b"\x00\x00\x01\x00", 0, "image/vnd.microsoft.icon"),
    # Video
    (b"\x1aE\xdf\xa3", 0, "video/webm"),
    # Audio
    (b"ID3", 0, "audio/mpeg"),
    (b"\xff\xfb", 0, "audio/mpeg"),
    (b"\xff\xfa", 0, "audio/mpeg"),
    (b"\xff\xf3", 0, "audio/mpeg"),
    (b"\xff\xf2", 0, "audio/mpeg"),
    (b"fLaC", 0, "audio/flac"),
    (b"OggS", 0, "audio/ogg"),
    # Documents and archives
    (b"%PDF-", 0, "application/pdf"),
    (b"PK\x03\x04", 0, "application/zip"),
    (b"PK\x05\x06", 0, "application/zip"),
    (b"\x1f\x8b", 0, "application/gzip"),
    (b"BZh", 0, "application/x-bzip2"),
    (b"\xfd7zXZ\x00", 0, "application/x-xz"),
    (b"7z\xbc\xaf\x27\x1c", 0, "application/x-7z-compressed"),
    (b"\x28\xb5\x2f\xfd", 0, "application/zstd"),
    (b"ustar", 257, "application/x-tar"),
    (b"\x7fELF", 0, "application/x-executable"),
    (b"\x00asm", 0, "application/wasm"),
    (b"SQLite format 3\x00", 0, "application/vnd.sqlite3"),
]

_RIFF_TYPES: Final[dict[bytes, str]] = {
    b"WEBP": "image/webp",
    b"WAVE": "audio/x-wav",
    b"AVI ": "video/x-msvideo",
}

_HEIC_BRANDS: Final[frozenset[bytes]] = frozenset(
    {b"heic", b"heix", b"hevc", b"hevx", b"mif1", b"msf1"}
)
_AUDIO_BRANDS: Final[frozenset[bytes]] = frozenset({b"M4A ", b"M4B "})

# Bytes inspected for text detection
_TEXT_SAMPLE: Final[int] = 4096
# Share of control or unmappable characters at which a sample counts as binary
_MAX_CONTROL_RATIO: Final[float] = 0.1


def guess_mimetype(data: bytes) -> str:
    """Guess the MIME type of ``data``.

    ``text/plain`` results carry a charset parameter, e.g.
    ``"text/plain; charset=utf-8"``.
    """
    if not data:
        return "application/x-empty"

    mimetype = _detect_by_magic(data)
    if mimetype is not None:
        return mimetype

    mimetype = _detect_text(data)
    if mimetype is not None:
        return mimetype

    return OCTET_STREAM


def _detect_by_magic(data: bytes) -> str | None:
    """Detect a MIME type from magic bytes."""
    # RIFF container (WebP, WAV, AVI)
    if data.startswith(b"RIFF") and len(data) >= 12:
        riff_type = _RIFF_TYPES.get(data[8:12])
        if riff_type is not None:
            return riff_type

    ftyp = _check_ftyp(data)
    if ftyp is not None:
        return ftyp

    for magic, offset, mimetype in _MAGIC_SIGNATURES:
        if data[offset : offset + len(magic)] == magic:
            return mimetype

    return None


def _check_ftyp(data: bytes) -> str | None:
    """Check for an ISO Base Media File Format ``ftyp`` box (MP4, MOV, HEIC)."""
    if len(data) < 12 or data[4:8] != b"ftyp":
        return None

    brand = data[8:12]
    if brand in _HEIC_BRANDS:
        return "image/heic"
    if brand in _AUDIO_BRANDS:
        return "audio/mp4"
    if brand == b"qt  ":
        return "video/quicktime"
    return "video/mp4"


def _detect_text(data: bytes) -> str | None:
    """Detect JSON, markup and plain text, with a charset guess."""
    sample = data[:_TEXT_SAMPLE]
    if b"\x00" in sample:
        return None

    try:
        text = data.decode("utf-8")
        charset = "utf-8"
    except UnicodeDecodeError:
        # windows-1252 as fallback, mostly printable means legacy text
        text = data.decode("cp1252", errors="replace")
        charset = "windows-1252"

    if _control_ratio(text[:_TEXT_SAMPLE]) >= _MAX_CONTROL_RATIO:
        return None

    stripped = text.lstrip()
    if charset == "utf-8" and stripped.startswith(("{", "[")):
        try:
            json.loads(stripped)
            return "application/json"
        except json.JSONDecodeError:
            pass

    head = stripped[:256].lower()
    if head.startswith(("<!doctype html", "<html")):
        return f"text/html; charset={charset}"
    if head.startswith("<svg") or (head.startswith("<?xml") and "<svg" in stripped[:1024].lower()):
        return "image/svg+xml"
    if head.startswith("<?xml"):
        return f"text/xml; charset={charset}"

    return f"text/plain; charset={charset}"


def _control_ratio(text: str) -> float:
    # U+FFFD marks bytes the cp1252 fallback could not map
    if not text:
        return 1.0
    bad = sum(
        1 for char in text
        if char == "\ufffd" or not (char.isprintable() or char in "\n\r\t\f")
    )
    return bad / len(text)
