"""
Calling-hours window evaluation.
"""

from datetime import datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dialflow.broadcasts.models import Broadcast
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)


def is_within_window(local_time: time, start: time | None, end: time | None) -> bool:
    """Check if a local time falls inside [start, end]; windows may cross midnight."""
    if start is None or end is None:
        return True
    if start <= end:
        return start <= local_time <= end
    return local_time >= start or local_time <= end


def local_time_for(broadcast: Broadcast, now: datetime) -> time:
    """Wall-clock time in the broadcast's timezone (UTC when the zone is unknown)."""
    try:
        zone = ZoneInfo(broadcast.timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown broadcast timezone, falling back to UTC",
            extra={"broadcast_id": str(broadcast.id), "timezone": broadcast.timezone},
        )
        zone = ZoneInfo("UTC")
    return now.astimezone(zone).time().replace(tzinfo=None)


def is_within_calling_hours(broadcast: Broadcast, now: datetime) -> bool:
    """Return True if the broadcast may place calls at ``now``.

    Args:
        broadcast: Broadcast configuration.
        now: Timezone-aware current time.

    Returns:
        True when bypassed, unconfigured, or inside the window.
    """
    if broadcast.bypass_calling_hours:
        return True
    return is_within_window(
        local_time_for(broadcast, now),
        broadcast.calling_hours_start,
        broadcast.calling_hours_end,
    )
