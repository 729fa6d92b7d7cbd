from datetime import timedelta

from broadcast_dialer.core.timeutils import as_utc, utcnow
from broadcast_dialer.models.broadcast import AmdAction, BroadcastStatus
from broadcast_dialer.models.broadcast_event import BroadcastEvent
from broadcast_dialer.models.callback_ledger import ProcessedCallback
from broadcast_dialer.models.dnc import DncEntry, DncRetry
from broadcast_dialer.models.queue_item import QueueItem, QueueStatus, CallOutcome
from broadcast_dialer.services import dialer_service, monitor_service, outcome_service, queue_service

from conftest import add_caller_ids, add_leads, make_broadcast


def _dialed(db, collaborators, **overrides):
    """An active broadcast with one lead whose call is in flight as CA0001."""
    broadcast = make_broadcast(db, status=BroadcastStatus.ACTIVE, **overrides)
    add_caller_ids(db)
    add_leads(db, broadcast.id, ["+14155550000"])
    item = queue_service.claim_batch(db, broadcast.id, 1)[0]
    dialer_service.dispatch_item(db, broadcast, item, collaborators)
    return broadcast, item


def test_press_one_transfers_the_caller(db, collaborators):
    broadcast, item = _dialed(db, collaborators)

    greeting = outcome_service.handle_answer(db, "CA0001", item.id)
    assert greeting.play_url == "https://audio.test/promo.mp3"
    assert "/api/webhooks/telephony/dtmf" in greeting.gather_action_url

    outcome_service.handle_amd(db, "CA0001", "human")
    assert item.status == QueueStatus.ANSWERED

    instruction = outcome_service.handle_dtmf(db, "CA0001", "1", collaborators)
    assert instruction.transfer_to == "+15550001111"
    assert item.status == QueueStatus.TRANSFERRED
    assert item.dtmf_digit == "1"

    ack = outcome_service.handle_status(db, "CA0001", "completed", duration=42)
    assert ack["applied"] is False
    assert ack["reason"] == "already_final"
    assert item.call_duration_seconds == 42

    db.refresh(broadcast)
    assert broadcast.calls_made == 1
    assert broadcast.calls_answered == 1
    assert broadcast.transfers_completed == 1


def test_rendered_transfer_dials_destination(db, collaborators):
    _dialed(db, collaborators)
    instruction = outcome_service.handle_dtmf(db, "CA0001", "1", collaborators)
    body, media_type = collaborators.telephony.render_instruction(instruction)
    assert media_type == "application/xml"
    assert "<Dial>+15550001111</Dial>" in body


def test_unknown_digit_replays_with_notice(db, collaborators):
    _, item = _dialed(db, collaborators)

    instruction = outcome_service.handle_dtmf(db, "CA0001", "5", collaborators)

    assert instruction.notice == outcome_service.INVALID_OPTION_NOTICE
    assert instruction.gather_action_url is not None
    assert item.status == QueueStatus.CALLING


def test_replay_digit_marks_answered(db, collaborators):
    _, item = _dialed(db, collaborators)

    instruction = outcome_service.handle_dtmf(db, "CA0001", "0", collaborators)

    assert instruction.play_url == "https://audio.test/promo.mp3"
    assert item.status == QueueStatus.ANSWERED
    assert item.dtmf_digit == "0"


def test_callback_schedules_follow_ups(db, collaborators):
    broadcast, item = _dialed(db, collaborators)
    before = utcnow()

    instruction = outcome_service.handle_dtmf(db, "CA0001", "2", collaborators)

    assert instruction.hangup is True
    assert "24 hours" in instruction.notice
    assert item.status == QueueStatus.CALLBACK
    call_at = as_utc(item.callback_scheduled_at)
    assert before + timedelta(hours=24) <= call_at <= utcnow() + timedelta(hours=24)

    assert len(collaborators.calendar.events) == 1
    reminder = collaborators.calendar.reminders[0]
    assert reminder["message"].startswith("Hi there,")
    assert "1 hour(s)" in reminder["message"]
    assert as_utc(reminder["send_at"]) == call_at - timedelta(hours=1)
    db.refresh(broadcast)
    assert broadcast.callbacks_scheduled == 1


def test_callback_side_effect_failure_is_recorded(db, collaborators):
    _, item = _dialed(db, collaborators)
    collaborators.calendar.fail_events = True

    outcome_service.handle_dtmf(db, "CA0001", "2", collaborators)

    assert item.status == QueueStatus.CALLBACK
    event = db.query(BroadcastEvent).filter(BroadcastEvent.kind == "callback_side_effects_failed").one()
    assert event.payload["queue_item_id"] == item.id
    assert len(collaborators.calendar.reminders) == 1


def test_auto_callback_call_is_queued_and_cleared_by_reset(db, collaborators):
    broadcast, item = _dialed(
        db,
        collaborators,
        dtmf_actions=[
            {
                "action": "callback",
                "digit": "2",
                "delay_hours": 2,
                "callback_options": {"auto_callback_call": True, "send_sms_reminder": False},
            }
        ],
    )

    outcome_service.handle_dtmf(db, "CA0001", "2", collaborators)

    follow_up = db.query(QueueItem).filter(QueueItem.callback_of_id == item.id).one()
    assert follow_up.status == QueueStatus.PENDING
    assert follow_up.max_attempts == 1
    assert as_utc(follow_up.scheduled_at) > utcnow() + timedelta(hours=1)
    db.refresh(broadcast)
    assert broadcast.total_leads == 2

    broadcast.status = BroadcastStatus.PAUSED
    db.commit()
    queue_service.reset(db, broadcast.id)
    db.expire_all()
    assert db.query(QueueItem).count() == 1
    assert item.status == QueueStatus.PENDING
    assert broadcast.total_leads == 1


def test_dnc_blocks_number_and_notifies_directory(db, collaborators):
    _, item = _dialed(db, collaborators)

    instruction = outcome_service.handle_dtmf(db, "CA0001", "9", collaborators)

    assert instruction.hangup is True
    assert item.status == QueueStatus.DNC
    assert db.query(DncEntry).filter(DncEntry.phone_number == "+14155550000").count() == 1
    assert collaborators.leads.flagged == [(None, "+14155550000")]

    other = make_broadcast(db)
    assert add_leads(db, other.id, ["+14155550000"])["dnc_filtered"] == 1


def test_failed_dnc_write_is_retried(db, collaborators):
    _dialed(db, collaborators)
    collaborators.leads.fail_flag = True

    outcome_service.handle_dtmf(db, "CA0001", "9", collaborators)

    retry = db.query(DncRetry).one()
    assert retry.attempts == 1
    assert retry.completed_at is None

    collaborators.leads.fail_flag = False
    assert monitor_service.flush_dnc_retries(db, collaborators) == 1
    db.refresh(retry)
    assert retry.completed_at is not None
    assert collaborators.leads.flagged == [(None, "+14155550000")]


def test_duplicate_amd_callback_is_ignored(db, collaborators):
    broadcast, item = _dialed(db, collaborators)

    outcome_service.handle_amd(db, "CA0001", "human")
    outcome_service.handle_amd(db, "CA0001", "human")

    assert item.status == QueueStatus.ANSWERED
    assert db.query(ProcessedCallback).filter(ProcessedCallback.event_key == "amd").count() == 1
    db.refresh(broadcast)
    assert broadcast.calls_answered == 1


def test_repeated_status_after_retry_is_ignored(db, collaborators):
    _, item = _dialed(db, collaborators, max_attempts=2)
    item_id = item.id

    first = outcome_service.handle_status(db, "CA0001", "busy", queue_item_id=item_id)
    assert first["applied"] is True
    assert item.status == QueueStatus.PENDING

    again = outcome_service.handle_status(db, "CA0001", "busy", queue_item_id=item_id)
    assert again["applied"] is False
    assert again["reason"] == "unknown_call"
    assert item.attempt_count == 1


def test_late_callback_does_not_take_over_the_next_attempt(db, collaborators):
    broadcast, item = _dialed(db, collaborators, max_attempts=2)
    outcome_service.handle_status(db, "CA0001", "busy", queue_item_id=item.id)

    # claimed again, the new call is not placed yet
    (again,) = queue_service.claim_batch(db, broadcast.id, 1)
    assert again.id == item.id
    assert again.provider_call_id is None

    ack = outcome_service.handle_status(db, "CA0001", "no-answer", queue_item_id=item.id)
    assert ack == {"applied": False, "reason": "unknown_call"}
    assert outcome_service.handle_dtmf(db, "CA0001", "1", collaborators, item.id).hangup is True
    db.refresh(item)
    assert item.status == QueueStatus.CALLING
    assert item.provider_call_id is None
    assert item.attempt_count == 1

    dialer_service.dispatch_item(db, broadcast, item, collaborators)
    assert item.provider_call_id == "CA0002"


def test_ringing_status_carries_no_outcome(db, collaborators):
    _, item = _dialed(db, collaborators)

    ack = outcome_service.handle_status(db, "CA0001", "ringing")

    assert ack["reason"] == "no_outcome"
    assert item.status == QueueStatus.CALLING


def test_completed_without_duration_counts_as_no_answer(db, collaborators):
    _, item = _dialed(db, collaborators)
    assert outcome_service.map_provider_status("completed", item, 0) == CallOutcome.NO_ANSWER
    assert outcome_service.map_provider_status("completed", item, 12) == CallOutcome.COMPLETED


def test_machine_hangs_up_by_default(db, collaborators):
    _, item = _dialed(db, collaborators)

    instruction = outcome_service.handle_amd(db, "CA0001", "machine_end_beep")

    assert instruction.hangup is True
    assert instruction.play_url is None
    assert item.status == QueueStatus.COMPLETED
    assert item.amd_result == "machine"


def test_machine_gets_voicemail_when_configured(db, collaborators):
    _, item = _dialed(
        db,
        collaborators,
        amd_action=AmdAction.LEAVE_MESSAGE,
        voicemail_audio_url="https://audio.test/voicemail.mp3",
    )

    instruction = outcome_service.handle_amd(db, "CA0001", "machine_end_beep")

    assert instruction.play_url == "https://audio.test/voicemail.mp3"
    assert instruction.hangup is True


def test_agent_outcome_completes_call(db, collaborators):
    _, item = _dialed(db, collaborators)

    ack = outcome_service.handle_agent_outcome(db, "CA0001", CallOutcome.COMPLETED, collaborators)

    assert ack == {"applied": True, "queue_item_id": item.id, "status": "completed"}
    assert outcome_service.handle_agent_outcome(db, "CA0001", CallOutcome.COMPLETED, collaborators)["reason"] == (
        "already_final"
    )


def test_unknown_call_is_acknowledged(db):
    ack = outcome_service.handle_status(db, "CA-unknown", "completed")
    assert ack == {"applied": False, "reason": "unknown_call"}
    assert outcome_service.handle_answer(db, "CA-unknown").hangup is True


def test_render_template():
    text = outcome_service.render_template("Hi {{first_name}}, in {{ hours }}h {{missing}}", first_name="Ada", hours=2)
    assert text == "Hi Ada, in 2h {{missing}}"
