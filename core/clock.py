"""
core/clock.py -- Wall-clock source shared by every time-dependent component.

Services take a ``clock`` callable instead of calling datetime.now() inline so
tests can pin the current instant (e.g. a reset token exactly 24h old).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize a UTC instant with a fixed-width layout.

    timespec="microseconds" keeps every stored value the same width, so the
    TEXT columns that hold timestamps sort and compare chronologically.
    """
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")
