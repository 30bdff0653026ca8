"""Time helpers.

Timestamps are stored as naive UTC datetimes.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
