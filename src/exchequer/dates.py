"""Date helpers; every date written to a record is a UTC date."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def today() -> str:
    """Current UTC calendar date as ``YYYY-MM-DD``."""
    return utc_now().date().isoformat()


def utc_timestamp(epoch: Optional[int] = None) -> str:
    """UTC time as a sortable ISO-8601 string; now unless ``epoch`` is given."""
    moment = utc_now() if epoch is None else datetime.fromtimestamp(epoch, timezone.utc)
    return moment.replace(tzinfo=None).isoformat(timespec="microseconds") + "Z"
