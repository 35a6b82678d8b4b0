"""
Timestamp helpers.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current UTC time with microsecond resolution."""
    return datetime.now(timezone.utc)
