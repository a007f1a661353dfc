"""StoredFile model: one row per unique blob, keyed by content hash."""

from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from webpaste.models.base import Base


class StoredFile(Base):
    """Content-addressed blob with a reference count.

    The blob bytes live on disk under ``upload_file_dir/<file_hash>``.
    ``ref_count`` always equals the number of live ``urls`` rows pointing
    at this hash; a row never survives at zero.
    """

    __tablename__ = "files"

    file_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    """Lowercase hex SHA-256 of the blob bytes."""

    ref_count: Mapped[int] = mapped_column(Integer, default=1)
