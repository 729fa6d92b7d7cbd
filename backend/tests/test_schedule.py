from datetime import datetime, time, timezone
from types import SimpleNamespace

from broadcast_dialer.services import schedule_service


def _broadcast(**overrides):
    values = dict(
        bypass_calling_hours=False,
        timezone="America/New_York",
        calling_hours_start=time(9, 0),
        calling_hours_end=time(21, 0),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_inside_window_in_broadcast_timezone():
    # 15:00 UTC is 10:00 in New York during winter
    now = datetime(2024, 1, 15, 15, 0, tzinfo=timezone.utc)
    assert schedule_service.is_call_allowed(_broadcast(), now) == (True, None, 0)


def test_after_window_waits_for_next_morning():
    # 03:00 UTC is 22:00 the previous evening in New York
    now = datetime(2024, 1, 15, 3, 0, tzinfo=timezone.utc)
    allowed, reason, retry = schedule_service.is_call_allowed(_broadcast(), now)
    assert allowed is False
    assert reason == "outside_calling_hours"
    assert retry == 11 * 3600


def test_before_window_waits_for_start_today():
    now = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
    allowed, _, retry = schedule_service.is_call_allowed(_broadcast(), now)
    assert allowed is False
    assert retry == 2 * 3600


def test_same_instant_depends_on_timezone():
    now = datetime(2024, 1, 15, 15, 0, tzinfo=timezone.utc)
    allowed, _, _ = schedule_service.is_call_allowed(_broadcast(timezone="America/Los_Angeles"), now)
    assert allowed is False


def test_bypass_always_allows():
    now = datetime(2024, 1, 15, 3, 0, tzinfo=timezone.utc)
    assert schedule_service.is_call_allowed(_broadcast(bypass_calling_hours=True), now) == (True, None, 0)


def test_next_start_rolls_over_to_tomorrow():
    tz = schedule_service.broadcast_zone(_broadcast())
    now = datetime(2024, 1, 1, 23, 0, tzinfo=tz)
    nxt = schedule_service._next_start(now, _broadcast())
    assert nxt.tzinfo == tz
    assert nxt == datetime(2024, 1, 2, 9, 0, tzinfo=tz)


def test_unknown_timezone_falls_back_to_default():
    assert schedule_service.is_valid_timezone("Mars/Olympus_Mons") is False
    zone = schedule_service.broadcast_zone(_broadcast(timezone="Mars/Olympus_Mons"))
    assert str(zone) == schedule_service.settings.default_timezone


def test_window_minutes():
    assert schedule_service.window_minutes(_broadcast()) == 720
