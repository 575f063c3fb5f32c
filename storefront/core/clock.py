from datetime import datetime, timezone

def utcnow() -> datetime:
    """Naive UTC timestamp, matching how SQLite hands datetimes back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
