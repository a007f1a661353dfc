"""Url model: short tail -> blob reference with an absolute expiry."""

from __future__ import annotations

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from webpaste.models.base import Base


class Url(Base):
    """A served link.

    ``file_hash`` is a reference, not ownership: many urls may share one
    StoredFile. The mimetype is sniffed once at upload and cached here so
    access never re-sniffs. A tail resolves to the same blob and mimetype
    for its whole lifetime.
    """

    __tablename__ = "urls"
    __table_args__ = (Index("index_expires_at", "expires_at"),)

    tail: Mapped[str] = mapped_column(String(64), primary_key=True)
    file_hash: Mapped[str] = mapped_column(String(64))
    mimetype: Mapped[str] = mapped_column(String(255))
    expires_at: Mapped[int] = mapped_column(Integer)
    """Absolute UNIX timestamp, integer seconds."""
