from datetime import timedelta

import pytest
from sqlalchemy import update

from broadcast_dialer.core.db import SessionLocal
from broadcast_dialer.core.errors import ReconciliationMismatch
from broadcast_dialer.core.timeutils import utcnow
from broadcast_dialer.integrations import ProviderCallStatus
from broadcast_dialer.models.broadcast import BroadcastStatus
from broadcast_dialer.models.queue_item import IN_FLIGHT_STATUSES, QueueItem, QueueStatus
from broadcast_dialer.services import dialer_service, monitor_service, outcome_service, queue_service
from broadcast_dialer.workers.monitor_worker import run_once

from conftest import add_caller_ids, add_leads, lead_numbers, make_broadcast


def _in_flight(db, collaborators, calls=1, **overrides):
    broadcast = make_broadcast(db, status=BroadcastStatus.ACTIVE, **overrides)
    add_caller_ids(db)
    add_leads(db, broadcast.id, lead_numbers(calls))
    items = queue_service.claim_batch(db, broadcast.id, calls)
    for item in items:
        dialer_service.dispatch_item(db, broadcast, item, collaborators)
    return broadcast, items


def _age(db, minutes):
    db.execute(
        update(QueueItem)
        .where(QueueItem.status.in_(list(IN_FLIGHT_STATUSES)))
        .values(updated_at=utcnow() - timedelta(minutes=minutes))
    )
    db.commit()


def test_stuck_call_fails_on_last_attempt(db, collaborators):
    broadcast, (item,) = _in_flight(db, collaborators)
    _age(db, 10)

    result = monitor_service.cleanup_stuck_calls(db, broadcast.id)

    assert result.cleaned == 1
    assert result.marked_failed == 1
    assert result.reset_to_pending == 0
    db.refresh(item)
    assert item.status == QueueStatus.FAILED
    assert item.attempt_count == 1
    assert item.last_error == monitor_service.STUCK_REASON


def test_stuck_call_with_attempts_left_is_requeued(db, collaborators):
    broadcast, (item,) = _in_flight(db, collaborators, max_attempts=3)
    _age(db, 10)

    result = monitor_service.cleanup_stuck_calls(db, broadcast.id)

    assert result.reset_to_pending == 1
    db.refresh(item)
    assert item.status == QueueStatus.PENDING


def test_recent_calls_are_not_stuck(db, collaborators):
    broadcast, (item,) = _in_flight(db, collaborators)

    assert monitor_service.cleanup_stuck_calls(db, broadcast.id).cleaned == 0
    db.refresh(item)
    assert item.status == QueueStatus.CALLING


def test_inspect_reports_mismatch_without_changing_anything(db, collaborators):
    broadcast, (live, ended) = _in_flight(db, collaborators, calls=2)
    collaborators.telephony.statuses["CA0002"] = ProviderCallStatus(call_id="CA0002", status="completed", duration=30)

    report = monitor_service.inspect_calls(db, broadcast.id, collaborators)

    assert report.inspected_count == 2
    assert report.mismatches == 1
    flagged = [entry.queue_item_id for entry in report.calls if entry.mismatch]
    assert flagged == [ended.id]
    db.expire_all()
    assert {live.status, ended.status} == {QueueStatus.CALLING}


def test_reconcile_applies_provider_status(db, collaborators):
    _, (item,) = _in_flight(db, collaborators)
    collaborators.telephony.statuses["CA0001"] = ProviderCallStatus(call_id="CA0001", status="completed", duration=30)

    result = monitor_service.reconcile_item(db, item.id, collaborators)

    assert result.applied_outcome == "completed"
    assert result.new_status == "completed"
    assert item.call_duration_seconds == 30


def test_reconcile_refuses_live_call(db, collaborators):
    _, (item,) = _in_flight(db, collaborators)

    with pytest.raises(ReconciliationMismatch):
        monitor_service.reconcile_item(db, item.id, collaborators)
    assert item.status == QueueStatus.CALLING


def test_monitor_pass_cleans_active_broadcasts(db, collaborators):
    _, (item,) = _in_flight(db, collaborators)
    _age(db, 10)

    summary = run_once(SessionLocal, collaborators)

    assert summary == {"broadcasts": 1, "cleaned": 1, "dnc_delivered": 0}
    db.refresh(item)
    assert item.status == QueueStatus.FAILED


AGENT_TRANSFER = [
    {"action": "transfer", "digit": "1", "transfer_to": "agent-queue", "destination_type": "agent", "max_concurrent": 1}
]


def test_answered_call_without_final_status_is_completed(db, collaborators):
    broadcast, (item,) = _in_flight(db, collaborators, max_attempts=3, dtmf_actions=AGENT_TRANSFER)
    outcome_service.handle_amd(db, "CA0001", "human")
    _age(db, 6 * 60)
    assert dialer_service.admission_capacity(db, broadcast) == 0

    result = monitor_service.cleanup_stuck_calls(db, broadcast.id)

    assert result.cleaned == 1
    assert result.marked_completed == 1
    assert result.reset_to_pending == 0
    db.refresh(item)
    assert item.status == QueueStatus.COMPLETED
    assert item.last_error == monitor_service.STUCK_REASON
    assert dialer_service.admission_capacity(db, broadcast) == 1


def test_answered_call_gets_longer_grace_period(db, collaborators):
    broadcast, (item,) = _in_flight(db, collaborators)
    outcome_service.handle_amd(db, "CA0001", "human")
    _age(db, 10)

    assert monitor_service.cleanup_stuck_calls(db, broadcast.id).cleaned == 0
    db.refresh(item)
    assert item.status == QueueStatus.ANSWERED


def test_inspect_includes_answered_calls(db, collaborators):
    broadcast, _ = _in_flight(db, collaborators, calls=2)
    outcome_service.handle_amd(db, "CA0001", "human")
    collaborators.telephony.statuses["CA0001"] = ProviderCallStatus(call_id="CA0001", status="completed", duration=45)

    report = monitor_service.inspect_calls(db, broadcast.id, collaborators)

    assert report.inspected_count == 2
    by_call = {entry.provider_call_id: entry for entry in report.calls}
    assert by_call["CA0001"].our_status == "answered"
    assert by_call["CA0001"].mismatch is True
    assert by_call["CA0002"].mismatch is False
