import pytest

from broadcast_dialer.core.errors import ConfirmationRequired, InvalidInput, InvalidTransition, NotReady
from broadcast_dialer.models.broadcast import BroadcastStatus, IvrMode
from broadcast_dialer.models.queue_item import QueueStatus
from broadcast_dialer.services import control_service, dialer_service, outcome_service, queue_service, readiness_service

from conftest import add_caller_ids, add_leads, lead_numbers, make_broadcast


def _check(result, check_id):
    return next(c for c in result.checks if c.id == check_id)


def test_readiness_blocks_without_phone_numbers(db):
    broadcast = make_broadcast(db)
    add_leads(db, broadcast.id, lead_numbers(3))

    result = readiness_service.check_readiness(db, broadcast.id)
    assert result.is_ready is False
    assert result.critical_failures == 1
    phone_check = _check(result, "phone_numbers")
    assert phone_check.status == "fail"
    assert phone_check.fix_action == "sync_caller_ids"
    assert result.blocking_reasons == [phone_check.message]


def test_readiness_lists_every_blocker(db):
    broadcast = make_broadcast(db, audio_url=None)

    result = readiness_service.check_readiness(db, broadcast.id)
    failing = {c.id: c.fix_action for c in result.checks if c.status == "fail"}
    assert failing == {
        "audio_generated": "generate_audio",
        "leads_in_queue": "add_leads",
        "phone_numbers": "sync_caller_ids",
    }


def test_readiness_suggests_reset_when_queue_is_spent(db):
    broadcast = make_broadcast(db)
    add_caller_ids(db)
    add_leads(db, broadcast.id, lead_numbers(1))
    queue_service.cancel_pending(db, broadcast.id)

    check = _check(readiness_service.check_readiness(db, broadcast.id), "leads_in_queue")
    assert check.status == "fail"
    assert check.fix_action == "reset_queue"


def test_ready_broadcast_reports_warnings_only(db):
    broadcast = make_broadcast(db)
    add_caller_ids(db)
    add_leads(db, broadcast.id, lead_numbers(2))

    result = readiness_service.check_readiness(db, broadcast.id)
    assert result.is_ready is True
    assert _check(result, "max_attempts").status == "warning"
    assert _check(result, "calling_hours").status == "warning"


def test_ai_mode_needs_no_audio(db):
    broadcast = make_broadcast(db, ivr_mode=IvrMode.AI_CONVERSATIONAL, audio_url=None, message_text=None)
    assert _check(readiness_service.check_readiness(db, broadcast.id), "audio_generated").status == "pass"


def test_start_refuses_unready_broadcast(db):
    broadcast = make_broadcast(db)
    add_leads(db, broadcast.id, lead_numbers(2))

    with pytest.raises(NotReady) as exc:
        control_service.start(db, broadcast.id)
    assert exc.value.status_code == 409
    assert exc.value.detail["fix_actions"] == ["sync_caller_ids"]
    db.refresh(broadcast)
    assert broadcast.status == BroadcastStatus.DRAFT


def test_high_volume_start_needs_confirmation(db):
    broadcast = make_broadcast(db)
    add_caller_ids(db, numbers=("+12125550100", "+12125550101"))
    add_leads(db, broadcast.id, lead_numbers(1500))

    with pytest.raises(ConfirmationRequired) as exc:
        control_service.start(db, broadcast.id)
    assert exc.value.lead_count == 1500
    assert exc.value.phone_count == 2
    assert exc.value.detail["confirmation_required"] is True
    db.refresh(broadcast)
    assert broadcast.status == BroadcastStatus.DRAFT

    result = control_service.start(db, broadcast.id, confirm=True)
    assert result.status == "active"
    assert result.pending == 1500


def test_start_stop_lifecycle(db):
    broadcast = make_broadcast(db)
    add_caller_ids(db)
    add_leads(db, broadcast.id, lead_numbers(2))

    with pytest.raises(InvalidTransition):
        control_service.stop(db, broadcast.id)

    control_service.start(db, broadcast.id)
    db.refresh(broadcast)
    assert broadcast.status == BroadcastStatus.ACTIVE
    assert broadcast.started_at is not None
    # starting an active broadcast changes nothing
    assert control_service.start(db, broadcast.id).status == "active"

    assert control_service.stop(db, broadcast.id).status == "paused"
    assert control_service.stop(db, broadcast.id).status == "paused"
    control_service.start(db, broadcast.id)
    db.refresh(broadcast)
    assert broadcast.status == BroadcastStatus.ACTIVE


def _active_with_calls(db, collaborators, leads=3, calls=2):
    broadcast = make_broadcast(db, status=BroadcastStatus.ACTIVE)
    add_caller_ids(db)
    add_leads(db, broadcast.id, lead_numbers(leads))
    for item in queue_service.claim_batch(db, broadcast.id, calls):
        dialer_service.dispatch_item(db, broadcast, item, collaborators)
    return broadcast


def test_emergency_stop_is_idempotent(db, collaborators):
    broadcast = _active_with_calls(db, collaborators)

    first = control_service.emergency_stop(db, broadcast.id, collaborators)
    assert first.status == "all_stopped"
    assert first.broadcast_status == "paused"
    assert first.pending_cancelled == 1
    assert first.calls_stopped == 2
    assert collaborators.telephony.hung_up == ["CA0001", "CA0002"]
    db.refresh(broadcast)
    stopped_at = broadcast.emergency_stopped_at
    assert stopped_at is not None

    second = control_service.emergency_stop(db, broadcast.id, collaborators)
    assert second.status == "all_stopped"
    assert second.pending_cancelled == 0
    assert second.calls_stopped == 0
    db.refresh(broadcast)
    assert broadcast.status == BroadcastStatus.PAUSED
    assert broadcast.emergency_stopped_at == stopped_at

    db.expire_all()
    statuses = {i.status for i in queue_service.list_items(db, broadcast.id)}
    assert statuses == {QueueStatus.CANCELLED}


def test_emergency_stop_hangs_up_answered_calls(db, collaborators):
    broadcast = _active_with_calls(db, collaborators, leads=2, calls=2)
    outcome_service.handle_amd(db, "CA0001", "human")
    answered = queue_service.find_by_provider_call_id(db, "CA0001")
    assert answered.status == QueueStatus.ANSWERED

    result = control_service.emergency_stop(db, broadcast.id, collaborators)

    assert result.status == "all_stopped"
    assert result.calls_stopped == 2
    assert collaborators.telephony.hung_up == ["CA0001", "CA0002"]
    db.expire_all()
    assert answered.status == QueueStatus.CANCELLED
    assert answered.attempt_count == 1


def test_emergency_stop_reports_calls_it_could_not_end(db, collaborators):
    broadcast = _active_with_calls(db, collaborators)
    collaborators.telephony.fail_hangup.add("CA0002")

    result = control_service.emergency_stop(db, broadcast.id, collaborators)
    assert result.status == "partial_failure"
    assert result.calls_stopped == 1
    assert result.calls_not_stopped == 1
    assert len(result.failures) == 1

    still_calling = queue_service.find_by_provider_call_id(db, "CA0002")
    assert still_calling.status == QueueStatus.CALLING


def test_test_batch_dials_immediately(db, collaborators):
    broadcast = make_broadcast(db)
    add_caller_ids(db)
    add_leads(db, broadcast.id, lead_numbers(5))

    result = control_service.test_batch(db, broadcast.id, collaborators, size=2)
    assert result.dispatched == 2
    assert result.failed == 0
    assert len(collaborators.telephony.placed) == 2
    db.refresh(broadcast)
    assert broadcast.status == BroadcastStatus.DRAFT
    assert broadcast.calls_made == 2

    with pytest.raises(InvalidInput):
        control_service.test_batch(db, broadcast.id, collaborators, size=51)


def test_generate_audio(db, collaborators):
    broadcast = make_broadcast(db, audio_url=None, voice_id="narrator")

    result = control_service.generate_audio(db, broadcast.id, collaborators)
    assert result.audio_url == "https://audio.test/1.mp3"
    assert collaborators.speech.requests == [("Hello from the spring promo.", "narrator")]
    db.refresh(broadcast)
    assert broadcast.audio_url == result.audio_url


def test_generate_audio_rejects_ai_mode(db, collaborators):
    broadcast = make_broadcast(db, ivr_mode=IvrMode.AI_CONVERSATIONAL)
    with pytest.raises(InvalidInput):
        control_service.generate_audio(db, broadcast.id, collaborators)
