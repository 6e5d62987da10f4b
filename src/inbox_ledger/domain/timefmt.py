from datetime import UTC, datetime
from email.utils import parsedate_to_datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def whole_seconds_between(started_at: datetime, completed_at: datetime) -> int:
    return int((completed_at - started_at).total_seconds())


def format_duration(seconds: float) -> str:
    if seconds <= 0:
        return "0 ms"
    if seconds < 1:
        return f"{seconds * 1000:.1f} ms"
    if seconds < 60:
        return f"{seconds:.2f} s"
    return f"{seconds / 60:.2f} min"


def parse_message_date(value: str | None) -> datetime | None:
    """Parse an RFC 2822 ``Date`` header such as ``Wed, 31 Dec 2025 17:57:42 +0000 (UTC)``."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
