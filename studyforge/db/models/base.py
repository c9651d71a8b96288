"""Declarative base and portable column types."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    """Generate a primary key."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all studyforge models."""
