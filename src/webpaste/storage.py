"""On-disk blob files.

Each unique blob is stored once as ``<root>/<file_hash>``. This class is
the only code that creates or deletes those files; both garbage-collection
sweeps delete through it.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Final

logger = logging.getLogger(__name__)

_SHA256_HEX_RE: Final[re.Pattern[str]] = re.compile(r"^[0-9a-f]{64}$")

# Prefix of in-flight temp files; never treated as blobs
TMP_PREFIX: Final[str] = ".tmp."


def is_blob_name(name: str) -> bool:
    return bool(_SHA256_HEX_RE.match(name))


class BlobDirectory:
    """Content-addressed blob files under a single directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def ensure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, file_hash: str) -> Path:
        if not is_blob_name(file_hash):
            raise ValueError(f"not a sha256 hex digest: {file_hash!r}")
        return self.root / file_hash

    def write_bytes_if_absent(self, file_hash: str, data: bytes) -> bool:
        """Publish ``data`` as the blob for ``file_hash`` unless it exists.

        Bytes are written to a temp file first and published with a hard
        link, so readers never see a partial blob and a concurrent writer of
        the same hash simply finds the file already there.

        Returns:
            True if this call created the file, False if it already existed.

        Raises:
            OSError: Any failure other than "already exists".
        """
        dest = self.path_for(file_hash)
        fd, tmp_path = tempfile.mkstemp(prefix=f"{TMP_PREFIX}{file_hash[:8]}.", dir=self.root)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            try:
                os.link(tmp_path, dest)
            except FileExistsError:
                return False
            return True
        finally:
            os.unlink(tmp_path)

    def read_bytes(self, file_hash: str) -> bytes:
        return self.path_for(file_hash).read_bytes()

    def exists(self, file_hash: str) -> bool:
        return self.path_for(file_hash).is_file()

    def remove(self, file_hash: str) -> bool:
        """Delete a blob file. Already-absent files are not an error.

        Returns:
            True if a file was removed, False if it was already gone.
        """
        try:
            self.path_for(file_hash).unlink()
        except FileNotFoundError:
            return False
        return True

    def iter_names(self) -> Iterator[str]:
        """Names of regular files in the directory, temp files excluded."""
        with os.scandir(self.root) as entries:
            for entry in entries:
                if entry.name.startswith(TMP_PREFIX):
                    continue
                if entry.is_file(follow_symlinks=False):
                    yield entry.name

    def iter_stale_temp_names(self, older_than: float) -> Iterator[str]:
        """Temp files last modified before ``older_than`` (UNIX seconds).

        A writer that crashed between creating and unlinking its temp file
        leaves one of these behind.
        """
        with os.scandir(self.root) as entries:
            for entry in entries:
                if not entry.name.startswith(TMP_PREFIX):
                    continue
                try:
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    mtime = entry.stat(follow_symlinks=False).st_mtime
                except FileNotFoundError:
                    continue
                if mtime < older_than:
                    yield entry.name

    def remove_name(self, name: str) -> bool:
        """Delete a file found by ``iter_names`` or ``iter_stale_temp_names``."""
        try:
            (self.root / name).unlink()
        except FileNotFoundError:
            return False
        return True
