"""Injectable time source.

Expiry, SLA and token checks all compare against a "now" supplied by a
Clock so that tests can pin time.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(UTC)


def fixed_clock(moment: datetime) -> Clock:
    """Build a clock that always returns ``moment``."""

    def _now() -> datetime:
        return moment

    return _now
