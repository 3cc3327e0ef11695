"""
Compatibility layer for Python 3.10+ support.

Key compatibility fixes:
- datetime.UTC: Introduced in Python 3.11
  - Python 3.11+: Uses native datetime.UTC
  - Python 3.10: Uses datetime.timezone.utc
"""

import sys
from datetime import datetime, timezone

if sys.version_info >= (3, 11):
    from datetime import UTC
else:
    UTC = timezone.utc


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def isoformat_utc(moment: datetime) -> str:
    """Format an aware datetime as ISO-8601 with a trailing 'Z'."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


__all__ = ["UTC", "isoformat_utc", "utc_now"]
