"""
Wall-clock abstraction so services can be driven by a fixed time in tests.
"""

from datetime import datetime, timezone


class SystemClock:
    """Real UTC wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as UTC ISO-8601 with millisecond precision."""
    utc = value.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision so stored and rendered values agree."""
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)
