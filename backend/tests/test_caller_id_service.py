from datetime import timedelta

import pytest

from broadcast_dialer.core.errors import NoAvailableNumber
from broadcast_dialer.core.timeutils import utcnow
from broadcast_dialer.integrations import DirectoryNumber
from broadcast_dialer.models.broadcast import CallerIdPolicy
from broadcast_dialer.models.caller_id import CallerId
from broadcast_dialer.services import caller_id_service

from conftest import add_caller_ids, make_broadcast


def test_local_presence_prefers_matching_area_code(db):
    broadcast = make_broadcast(db)
    add_caller_ids(db, numbers=("+12125550100", "+14155550100"))

    chosen = caller_id_service.select_caller_id(db, broadcast, "+14155551234")
    assert chosen.number == "+14155550100"


def test_local_presence_can_be_disabled(db):
    broadcast = make_broadcast(db, enable_local_presence=False)
    busy, idle = add_caller_ids(db, numbers=("+14155550100", "+12125550100"))
    busy.daily_calls = 10
    busy.usage_date = utcnow().date()
    db.commit()

    chosen = caller_id_service.select_caller_id(db, broadcast, "+14155551234")
    assert chosen.id == idle.id


def test_least_used_number_wins(db):
    broadcast = make_broadcast(db)
    heavy, light = add_caller_ids(db, numbers=("+12125550100", "+12125550101"))
    today = utcnow().date()
    heavy.daily_calls, heavy.usage_date = 5, today
    light.daily_calls, light.usage_date = 1, today
    db.commit()

    assert caller_id_service.select_caller_id(db, broadcast, "+13055550000").id == light.id


def test_usage_from_a_previous_day_does_not_count(db):
    broadcast = make_broadcast(db)
    (number,) = add_caller_ids(db, numbers=("+12125550100",))
    number.daily_calls = number.max_daily_calls
    number.usage_date = utcnow().date() - timedelta(days=1)
    db.commit()

    assert caller_id_service.select_caller_id(db, broadcast, "+13055550000").id == number.id


def test_unhealthy_numbers_are_never_selected(db):
    broadcast = make_broadcast(db)
    spam, quarantined, inbound, disabled, capped = add_caller_ids(
        db,
        numbers=("+12125550100", "+12125550101", "+12125550102", "+12125550103", "+12125550104"),
    )
    spam.is_spam = True
    quarantined.quarantine_until = utcnow() + timedelta(days=1)
    inbound.reserved_for_inbound = True
    disabled.rotation_enabled = False
    capped.daily_calls, capped.usage_date = capped.max_daily_calls, utcnow().date()
    db.commit()

    with pytest.raises(NoAvailableNumber):
        caller_id_service.select_caller_id(db, broadcast, "+12125559999")


def test_fixed_policy_returns_configured_number(db):
    broadcast = make_broadcast(db, caller_id_policy=CallerIdPolicy.FIXED, caller_id_number="+18005550199")
    assert caller_id_service.select_caller_id(db, broadcast, "+14155551234") == "+18005550199"


def test_record_usage_counts_per_day(db):
    (number,) = add_caller_ids(db)
    number.daily_calls = 40
    number.usage_date = utcnow().date() - timedelta(days=1)
    db.commit()

    caller_id_service.record_usage(db, number.id)
    db.commit()
    db.refresh(number)
    assert number.daily_calls == 1
    assert number.usage_date == utcnow().date()

    caller_id_service.record_usage(db, number.id)
    db.commit()
    db.refresh(number)
    assert number.daily_calls == 2
    assert number.last_used_at is not None


def test_sync_pool_upserts_and_keeps_usage(db, collaborators):
    directory = collaborators.phone_directory
    directory.numbers["acct-1"] = [
        DirectoryNumber(number="(212) 555-0100", on_trunk=True),
        DirectoryNumber(number="+14155550100", is_spam=True, max_daily_calls=50),
        DirectoryNumber(number="not a number"),
    ]

    result = caller_id_service.sync_pool(db, "acct-1", directory)
    assert result == {"account_id": "acct-1", "inserted": 2, "updated": 0, "total": 2}

    first = caller_id_service.find_pool_entry(db, "acct-1", "+12125550100")
    assert first.area_code == "212"
    assert first.on_trunk is True
    first.daily_calls = 7
    first.usage_date = utcnow().date()
    db.commit()

    directory.numbers["acct-1"][0] = DirectoryNumber(number="+12125550100", on_trunk=False)
    result = caller_id_service.sync_pool(db, "acct-1", directory)
    assert result["inserted"] == 0
    assert result["updated"] == 2

    db.refresh(first)
    assert first.on_trunk is False
    assert first.daily_calls == 7
    assert [n.number for n in caller_id_service.healthy_pool(db, "acct-1")] == ["+12125550100"]
    assert db.query(CallerId).count() == 2
