"""Server clock helpers.

All timestamps are naive UTC so they compare cleanly after a round trip
through SQLite, which drops tzinfo.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
