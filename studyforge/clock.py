"""Time helpers shared by the store, workers and schedulers."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the database columns store time."""
    return datetime.now(UTC).replace(tzinfo=None)
