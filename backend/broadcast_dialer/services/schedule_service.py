from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..core.config import get_settings
from ..core.timeutils import utcnow
from ..models.broadcast import Broadcast

settings = get_settings()


def broadcast_zone(broadcast: Broadcast) -> ZoneInfo:
    try:
        return ZoneInfo(broadcast.timezone or settings.default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(settings.default_timezone)


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def is_call_allowed(broadcast: Broadcast, now: datetime | None = None) -> tuple[bool, str | None, int]:
    """Check the broadcast's calling window in its own timezone.

    Returns ``(allowed, reason, retry_after_seconds)``.
    """
    if broadcast.bypass_calling_hours:
        return True, None, 0
    tz = broadcast_zone(broadcast)
    local_now = (now or utcnow()).astimezone(tz)
    current_time = local_now.time()
    if broadcast.calling_hours_start <= current_time < broadcast.calling_hours_end:
        return True, None, 0
    next_start = _next_start(local_now, broadcast)
    return False, "outside_calling_hours", max(int((next_start - local_now).total_seconds()), 1)


def _next_start(local_now: datetime, broadcast: Broadcast) -> datetime:
    start_today = datetime.combine(local_now.date(), broadcast.calling_hours_start, tzinfo=local_now.tzinfo)
    if local_now < start_today:
        return start_today
    return datetime.combine(local_now.date() + timedelta(days=1), broadcast.calling_hours_start, tzinfo=local_now.tzinfo)


def window_minutes(broadcast: Broadcast) -> int:
    start = broadcast.calling_hours_start
    end = broadcast.calling_hours_end
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)
