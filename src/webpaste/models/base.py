"""Declarative base for webpaste ORM models."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all webpaste tables."""
