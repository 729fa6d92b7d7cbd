"""Turns provider webhooks into queue item outcomes and IVR instructions."""
import logging
import re
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.errors import InvalidTransition, ProviderError, UnknownDtmfAction, ConcurrentUpdate
from ..core.timeutils import utcnow
from ..integrations import Collaborators, IvrInstruction
from ..models.broadcast import Broadcast, AmdAction, IvrMode
from ..models.call_attempt import CallAttempt
from ..models.callback_ledger import ProcessedCallback
from ..models.dnc import DncEntry, DncRetry
from ..models.queue_item import QueueItem, QueueStatus, CallOutcome, FINAL_STATUSES
from ..schemas.broadcast import CallbackAction, DncAction, ReplayAction, TransferAction, parse_dtmf_actions
from . import queue_service
from .dialer_service import callback_url
from .event_service import record_event

logger = logging.getLogger(__name__)

IGNORED_PROVIDER_STATUSES = frozenset({"queued", "initiated", "ringing"})
PROVIDER_STATUS_OUTCOMES = {
    "in-progress": CallOutcome.ANSWERED,
    "answered": CallOutcome.ANSWERED,
    "busy": CallOutcome.BUSY,
    "no-answer": CallOutcome.NO_ANSWER,
    "failed": CallOutcome.FAILED,
    "canceled": CallOutcome.FAILED,
    "completed": CallOutcome.COMPLETED,
}
MACHINE_RESULTS = frozenset(
    {"machine", "machine_start", "machine_end_beep", "machine_end_silence", "machine_end_other", "fax"}
)
DEFAULT_SMS_TEMPLATE = (
    "Hi {{first_name}}, just a reminder about your scheduled callback in {{hours}} hour(s). Talk soon!"
)
INVALID_OPTION_NOTICE = "Sorry, that is not a valid option."


def map_provider_status(status: str, item: QueueItem, duration: int | None = None) -> CallOutcome | None:
    """Translate a provider call status; ``None`` means the event carries no outcome."""
    status = (status or "").lower()
    if status in IGNORED_PROVIDER_STATUSES:
        return None
    outcome = PROVIDER_STATUS_OUTCOMES.get(status)
    if outcome == CallOutcome.COMPLETED and item.status == QueueStatus.CALLING and not duration:
        # hung up before anyone picked up
        return CallOutcome.NO_ANSWER
    return outcome


def resolve_item(db: Session, provider_call_id: str | None, queue_item_id: int | None) -> QueueItem | None:
    item = queue_service.find_by_provider_call_id(db, provider_call_id) if provider_call_id else None
    if item is not None or queue_item_id is None:
        return item
    item = db.get(QueueItem, queue_item_id)
    # the id in the URL belongs to whichever call is current for the item
    if item is None or item.provider_call_id not in (None, provider_call_id):
        return None
    if provider_call_id and _finished_call(db, item.id, provider_call_id):
        # late callback from an earlier attempt
        return None
    if provider_call_id and item.provider_call_id is None and item.status == QueueStatus.CALLING:
        item.provider_call_id = provider_call_id
    return item


def _finished_call(db: Session, item_id: int, provider_call_id: str) -> bool:
    return (
        db.query(CallAttempt.id)
        .filter(CallAttempt.queue_item_id == item_id, CallAttempt.provider_call_id == provider_call_id)
        .first()
        is not None
    )


def _seen(db: Session, provider_call_id: str | None, event_key: str) -> bool:
    """Check the ledger and stage the event; the caller's commit makes it durable."""
    if not provider_call_id:
        return False
    exists = (
        db.query(ProcessedCallback.id)
        .filter(ProcessedCallback.provider_call_id == provider_call_id, ProcessedCallback.event_key == event_key)
        .first()
    )
    if exists:
        return True
    db.add(ProcessedCallback(provider_call_id=provider_call_id, event_key=event_key))
    return False


def _commit_once(db: Session) -> bool:
    """Commit; ``False`` when a concurrent delivery of the same event won."""
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrentUpdate("Queue item was modified concurrently") from exc
    return True


def message_instruction(broadcast: Broadcast, item: QueueItem, notice: str | None = None) -> IvrInstruction:
    gather = broadcast.ivr_mode == IvrMode.DTMF and bool(broadcast.dtmf_actions)
    return IvrInstruction(
        play_url=broadcast.audio_url,
        say_text=None if broadcast.audio_url else broadcast.message_text,
        voice_id=broadcast.voice_id,
        gather_action_url=callback_url("dtmf", item.id) if gather else None,
        notice=notice,
        hangup=not gather,
    )


def hangup_instruction(notice: str | None = None) -> IvrInstruction:
    return IvrInstruction(notice=notice, hangup=True)


def _record_duration(db: Session, item: QueueItem, duration: int) -> None:
    item.call_duration_seconds = duration
    try:
        _commit_once(db)
    except ConcurrentUpdate:
        logger.info("Duration for item %s dropped after a concurrent update", item.id)


def handle_status(
    db: Session,
    provider_call_id: str,
    status: str,
    *,
    queue_item_id: int | None = None,
    duration: int | None = None,
    error: str | None = None,
) -> dict:
    item = resolve_item(db, provider_call_id, queue_item_id)
    if item is None:
        logger.warning("Status %s for unknown call %s", status, provider_call_id)
        return {"applied": False, "reason": "unknown_call"}
    if item.status in FINAL_STATUSES:
        if duration is not None and item.call_duration_seconds is None:
            _record_duration(db, item, duration)
        return {"applied": False, "reason": "already_final", "queue_item_id": item.id, "status": item.status.value}

    outcome = map_provider_status(status, item, duration)
    if outcome is None or (outcome == CallOutcome.ANSWERED and item.status == QueueStatus.ANSWERED):
        if duration is not None:
            _record_duration(db, item, duration)
        return {"applied": False, "reason": "no_outcome", "queue_item_id": item.id, "status": item.status.value}

    if _seen(db, provider_call_id, f"status:{status}"):
        db.rollback()
        return {"applied": False, "reason": "duplicate", "queue_item_id": item.id, "status": item.status.value}

    reason = error or (f"provider status {status}" if outcome in queue_service.RETRYABLE_OUTCOMES else None)
    try:
        queue_service.apply_outcome(db, item, outcome, reason=reason, duration=duration, commit=False)
    except InvalidTransition as exc:
        db.rollback()
        logger.warning("Ignoring status %s for item %s: %s", status, item.id, exc.message)
        return {"applied": False, "reason": "invalid_transition", "queue_item_id": item.id}
    try:
        if not _commit_once(db):
            return {"applied": False, "reason": "duplicate", "queue_item_id": item.id}
    except ConcurrentUpdate:
        logger.warning("Status %s for item %s lost a concurrent update", status, item.id)
        return {"applied": False, "reason": "concurrent_update", "queue_item_id": item.id}
    return {"applied": True, "queue_item_id": item.id, "status": item.status.value}


def handle_answer(db: Session, provider_call_id: str | None, queue_item_id: int | None = None) -> IvrInstruction:
    item = resolve_item(db, provider_call_id, queue_item_id)
    if item is None or item.status in FINAL_STATUSES:
        return hangup_instruction()
    try:
        _commit_once(db)
    except ConcurrentUpdate:
        logger.warning("Answer for item %s raced another update", item.id)
    return message_instruction(item.broadcast, item)


def handle_amd(
    db: Session, provider_call_id: str, answered_by: str, queue_item_id: int | None = None
) -> IvrInstruction:
    item = resolve_item(db, provider_call_id, queue_item_id)
    if item is None or item.status in FINAL_STATUSES:
        return hangup_instruction()
    broadcast = item.broadcast
    is_machine = (answered_by or "").lower() in MACHINE_RESULTS

    if _seen(db, provider_call_id, "amd"):
        db.rollback()
        return hangup_instruction() if is_machine else message_instruction(broadcast, item)

    try:
        if is_machine:
            queue_service.apply_outcome(db, item, CallOutcome.VOICEMAIL, amd_result="machine", commit=False)
        elif item.status == QueueStatus.CALLING:
            queue_service.apply_outcome(db, item, CallOutcome.ANSWERED, amd_result="human", commit=False)
        else:
            item.amd_result = "human"
    except InvalidTransition as exc:
        db.rollback()
        logger.warning("Ignoring AMD result for item %s: %s", item.id, exc.message)
        return hangup_instruction()
    try:
        _commit_once(db)
    except ConcurrentUpdate:
        logger.warning("AMD result for item %s raced another update", item.id)
        return hangup_instruction() if is_machine else message_instruction(broadcast, item)

    if not is_machine:
        return message_instruction(broadcast, item)
    if broadcast.amd_action == AmdAction.LEAVE_MESSAGE:
        audio = broadcast.voicemail_audio_url or broadcast.audio_url
        return IvrInstruction(
            play_url=audio,
            say_text=None if audio else broadcast.message_text,
            voice_id=broadcast.voice_id,
            hangup=True,
        )
    return hangup_instruction()


def resolve_dtmf_action(broadcast: Broadcast, digit: str):
    for action in parse_dtmf_actions(broadcast.dtmf_actions):
        if action.digit == digit:
            return action
    raise UnknownDtmfAction(f"Digit {digit!r} is not mapped for broadcast {broadcast.id}")


def handle_dtmf(
    db: Session,
    provider_call_id: str,
    digit: str,
    collaborators: Collaborators,
    queue_item_id: int | None = None,
) -> IvrInstruction:
    """Act on a key press. The caller is on the line, so every path returns an instruction."""
    item = resolve_item(db, provider_call_id, queue_item_id)
    if item is None or item.status in FINAL_STATUSES:
        return hangup_instruction()
    try:
        return _apply_dtmf(db, item, provider_call_id, digit, collaborators)
    except (InvalidTransition, ConcurrentUpdate) as exc:
        db.rollback()
        logger.warning("Key press %s for item %s not applied: %s", digit, item.id, exc.message)
        return hangup_instruction()


def _apply_dtmf(
    db: Session, item: QueueItem, provider_call_id: str, digit: str, collaborators: Collaborators
) -> IvrInstruction:
    broadcast = item.broadcast

    try:
        action = resolve_dtmf_action(broadcast, digit)
    except UnknownDtmfAction as exc:
        logger.info(exc.message)
        _commit_once(db)
        return message_instruction(broadcast, item, notice=INVALID_OPTION_NOTICE)

    if isinstance(action, ReplayAction):
        if item.status == QueueStatus.CALLING:
            queue_service.apply_outcome(db, item, CallOutcome.ANSWERED, digit=digit)
        else:
            _commit_once(db)
        return message_instruction(broadcast, item)

    if _seen(db, provider_call_id, f"dtmf:{digit}"):
        db.rollback()
        return hangup_instruction()

    if isinstance(action, TransferAction):
        queue_service.apply_outcome(db, item, CallOutcome.TRANSFERRED, digit=digit, commit=False)
        if not _commit_once(db):
            return hangup_instruction()
        if not action.transfer_to:
            logger.warning("Transfer on digit %s for broadcast %s has no destination", digit, broadcast.id)
            return hangup_instruction("Sorry, nobody is available to take your call right now. Goodbye.")
        return IvrInstruction(notice="Please hold while we connect you.", transfer_to=action.transfer_to)

    if isinstance(action, CallbackAction):
        call_at = utcnow() + timedelta(hours=action.delay_hours)
        warnings = apply_callback(db, item, call_at, action, collaborators, digit=digit)
        if warnings is None:
            return hangup_instruction()
        return hangup_instruction(f"Thank you. We will call you back in {_format_hours(action.delay_hours)}.")

    if isinstance(action, DncAction):
        if not apply_dnc(db, item, collaborators, digit=digit):
            return hangup_instruction()
        return hangup_instruction("You have been removed from our call list. Goodbye.")

    raise UnknownDtmfAction(f"Unsupported action for digit {digit!r}")


def apply_callback(
    db: Session,
    item: QueueItem,
    call_at,
    action: CallbackAction,
    collaborators: Collaborators,
    digit: str | None = None,
) -> list[str] | None:
    """Mark the item as a callback and run the best-effort follow-ups.

    Returns the side-effect warnings, or ``None`` when a concurrent delivery
    already handled the event.
    """
    options = action.callback_options
    queue_service.apply_outcome(db, item, CallOutcome.CALLBACK, digit=digit, callback_at=call_at, commit=False)
    if options.auto_callback_call:
        db.flush()
        queue_service.schedule_callback_item(db, item, call_at)
    if not _commit_once(db):
        return None

    warnings: list[str] = []
    if options.create_calendar_event:
        try:
            collaborators.calendar.create_event(
                title=f"Callback: {item.lead_name or item.phone_number}",
                starts_at=call_at,
                phone_number=item.phone_number,
                lead_id=item.lead_id,
            )
        except ProviderError as exc:
            logger.warning("Calendar event for item %s failed: %s", item.id, exc.message)
            warnings.append(f"calendar: {exc.message}")
    if options.send_sms_reminder:
        template = options.sms_reminder_template or DEFAULT_SMS_TEMPLATE
        message = render_template(
            template,
            first_name=_first_name(item.lead_name),
            hours=options.sms_reminder_hours_before,
        )
        try:
            collaborators.calendar.schedule_reminder(
                phone_number=item.phone_number,
                message=message,
                send_at=call_at - timedelta(hours=options.sms_reminder_hours_before),
            )
        except ProviderError as exc:
            logger.warning("SMS reminder for item %s failed: %s", item.id, exc.message)
            warnings.append(f"sms: {exc.message}")
    if warnings:
        record_event(db, item.broadcast_id, "callback_side_effects_failed", queue_item_id=item.id, warnings=warnings)
        db.commit()
    return warnings


def apply_dnc(db: Session, item: QueueItem, collaborators: Collaborators, digit: str | None = None) -> bool:
    """Mark the item DNC, block the number locally and tell the lead directory."""
    queue_service.apply_outcome(db, item, CallOutcome.DNC, digit=digit, commit=False)
    account_id = item.broadcast.account_id
    exists = (
        db.query(DncEntry.id)
        .filter(DncEntry.account_id == account_id, DncEntry.phone_number == item.phone_number)
        .first()
    )
    if not exists:
        db.add(DncEntry(account_id=account_id, phone_number=item.phone_number, reason="requested during call"))
    if not _commit_once(db):
        return False

    try:
        collaborators.leads.flag_do_not_call(item.lead_id, item.phone_number)
    except ProviderError as exc:
        logger.warning("DNC flag for %s failed, queued for retry: %s", item.phone_number, exc.message)
        db.add(DncRetry(lead_id=item.lead_id, phone_number=item.phone_number, attempts=1, last_error=exc.message))
        db.commit()
    return True


def handle_agent_outcome(
    db: Session,
    provider_call_id: str | None,
    outcome: CallOutcome,
    collaborators: Collaborators,
    *,
    queue_item_id: int | None = None,
    callback_delay_hours: float | None = None,
    reason: str | None = None,
) -> dict:
    """Apply the outcome an AI agent reported for a conversation."""
    item = resolve_item(db, provider_call_id, queue_item_id)
    if item is None:
        return {"applied": False, "reason": "unknown_call"}
    if item.status in FINAL_STATUSES:
        return {"applied": False, "reason": "already_final", "queue_item_id": item.id, "status": item.status.value}
    if _seen(db, provider_call_id, f"agent:{outcome.value}"):
        db.rollback()
        return {"applied": False, "reason": "duplicate", "queue_item_id": item.id}

    try:
        if outcome == CallOutcome.CALLBACK:
            action = CallbackAction(digit="0", delay_hours=callback_delay_hours or 24)
            call_at = utcnow() + timedelta(hours=action.delay_hours)
            if apply_callback(db, item, call_at, action, collaborators) is None:
                return {"applied": False, "reason": "duplicate", "queue_item_id": item.id}
        elif outcome == CallOutcome.DNC:
            if not apply_dnc(db, item, collaborators):
                return {"applied": False, "reason": "duplicate", "queue_item_id": item.id}
        else:
            queue_service.apply_outcome(db, item, outcome, reason=reason, commit=False)
            if not _commit_once(db):
                return {"applied": False, "reason": "duplicate", "queue_item_id": item.id}
    except InvalidTransition as exc:
        db.rollback()
        logger.warning("Agent outcome %s for item %s not applied: %s", outcome.value, item.id, exc.message)
        return {"applied": False, "reason": "invalid_transition", "queue_item_id": item.id}
    except ConcurrentUpdate:
        db.rollback()
        logger.warning("Agent outcome %s for item %s lost a concurrent update", outcome.value, item.id)
        return {"applied": False, "reason": "concurrent_update", "queue_item_id": item.id}
    return {"applied": True, "queue_item_id": item.id, "status": item.status.value}


def render_template(template: str, **values) -> str:
    def replace(match: re.Match) -> str:
        return str(values.get(match.group(1), match.group(0)))

    return re.sub(r"\{\{\s*(\w+)\s*\}\}", replace, template)


def _first_name(name: str | None) -> str:
    parts = (name or "").split()
    return parts[0] if parts else "there"


def _format_hours(hours: float) -> str:
    value = int(hours) if float(hours).is_integer() else hours
    return f"{value} hour" if value == 1 else f"{value} hours"
