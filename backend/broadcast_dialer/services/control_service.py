"""Operator actions on a broadcast."""
import logging

from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.errors import (
    ConfirmationRequired,
    InvalidInput,
    InvalidTransition,
    NotReady,
    ProviderError,
    NoAvailableNumber,
)
from ..core.timeutils import utcnow
from ..integrations import Collaborators
from ..models.broadcast import BroadcastStatus, IvrMode
from ..models.queue_item import QueueItem, CallOutcome, IN_FLIGHT_STATUSES
from ..schemas.control import (
    AudioResult,
    EmergencyStopResult,
    StartResult,
    StopResult,
    TestBatchResult,
    DispatchResult,
)
from . import broadcast_service, dialer_service, monitor_service, queue_service, readiness_service, schedule_service
from .event_service import record_event

logger = logging.getLogger(__name__)
settings = get_settings()


def start(db: Session, broadcast_id: int, confirm: bool = False) -> StartResult:
    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    if broadcast.status == BroadcastStatus.ACTIVE:
        pending, _ = readiness_service.queue_counts(db, broadcast_id)
        return StartResult(broadcast_id=broadcast_id, status=broadcast.status.value, stuck_calls_cleaned=0, pending=pending)
    if broadcast.status not in (BroadcastStatus.DRAFT, BroadcastStatus.PAUSED):
        raise InvalidTransition(f"Cannot start a {broadcast.status.value} broadcast")

    readiness = readiness_service.check_readiness(db, broadcast_id)
    if not readiness.is_ready:
        raise NotReady(readiness)

    pending, _ = readiness_service.queue_counts(db, broadcast_id)
    usable = readiness_service.usable_caller_id_count(db, broadcast)
    if (
        not confirm
        and pending >= settings.high_volume_lead_threshold
        and usable < settings.high_volume_min_caller_ids
    ):
        raise ConfirmationRequired(pending, usable)

    cleanup = monitor_service.cleanup_stuck_calls(db, broadcast_id)

    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    broadcast.started_at = utcnow()
    broadcast.emergency_stopped_at = None
    broadcast.last_error = None
    broadcast.last_error_at = None
    broadcast_service.transition(db, broadcast, BroadcastStatus.ACTIVE, confirmed=confirm)
    db.commit()
    logger.info("Broadcast %s started with %s pending leads", broadcast_id, pending)
    return StartResult(
        broadcast_id=broadcast_id,
        status=BroadcastStatus.ACTIVE.value,
        stuck_calls_cleaned=cleanup.cleaned,
        pending=pending,
        warnings=[c.message for c in readiness.checks if c.status == "warning"],
    )


def stop(db: Session, broadcast_id: int) -> StopResult:
    """Pause dialing; calls already in flight finish normally."""
    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    if broadcast.status != BroadcastStatus.PAUSED:
        broadcast_service.transition(db, broadcast, BroadcastStatus.PAUSED)
        db.commit()
    calling = dialer_service.in_flight_count(db, broadcast_id)
    return StopResult(broadcast_id=broadcast_id, status=BroadcastStatus.PAUSED.value, calling=calling)


def emergency_stop(db: Session, broadcast_id: int, collaborators: Collaborators) -> EmergencyStopResult:
    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    if broadcast.status == BroadcastStatus.ACTIVE:
        broadcast_service.transition(db, broadcast, BroadcastStatus.PAUSED, emergency=True)
    if broadcast.emergency_stopped_at is None:
        broadcast.emergency_stopped_at = utcnow()
    db.commit()

    cancelled = queue_service.cancel_pending(db, broadcast_id)

    in_flight = (
        db.query(QueueItem)
        .filter(
            QueueItem.broadcast_id == broadcast_id,
            QueueItem.status.in_(list(IN_FLIGHT_STATUSES)),
            QueueItem.provider_call_id.is_not(None),
        )
        .order_by(QueueItem.id)
        .all()
    )
    stopped = 0
    failures: list[str] = []
    for item in in_flight:
        try:
            collaborators.telephony.hangup(item.provider_call_id)
        except ProviderError as exc:
            logger.warning("Emergency hang-up of %s failed: %s", item.provider_call_id, exc.message)
            failures.append(f"{item.phone_number}: {exc.message}")
            continue
        try:
            queue_service.apply_outcome(db, item, CallOutcome.CANCELLED, reason="emergency stop")
        except InvalidTransition:
            # the status callback for the hang-up got there first
            db.rollback()
        stopped += 1

    status = "partial_failure" if failures else "all_stopped"
    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    record_event(
        db,
        broadcast_id,
        "emergency_stop",
        result=status,
        pending_cancelled=cancelled,
        calls_stopped=stopped,
        calls_not_stopped=len(failures),
    )
    db.commit()
    if failures:
        message = f"Stopped {stopped} call(s); {len(failures)} could not be hung up and may still be live"
    else:
        message = f"All activity stopped; {cancelled} pending call(s) cancelled"
    return EmergencyStopResult(
        broadcast_id=broadcast_id,
        status=status,
        broadcast_status=broadcast.status.value,
        pending_cancelled=cancelled,
        calls_stopped=stopped,
        calls_not_stopped=len(failures),
        failures=failures,
        message=message,
    )


def test_batch(db: Session, broadcast_id: int, collaborators: Collaborators, size: int | None = None) -> TestBatchResult:
    """Dial a handful of leads right away, outside the pacer."""
    size = size or settings.default_test_batch_size
    if size < 1 or size > settings.max_test_batch_size:
        raise InvalidInput(f"Test batch size must be between 1 and {settings.max_test_batch_size}")

    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    readiness = readiness_service.check_readiness(db, broadcast_id)
    if not readiness.is_ready:
        raise NotReady(readiness)
    allowed, reason, _ = schedule_service.is_call_allowed(broadcast)
    if not allowed:
        raise InvalidTransition(f"Test batch blocked: {reason}")

    items = queue_service.claim_batch(db, broadcast_id, size, source="test_batch")
    results: list[DispatchResult] = []
    for index, item in enumerate(items):
        try:
            outcome = dialer_service.dispatch_item(db, broadcast, item, collaborators)
        except NoAvailableNumber as exc:
            # the rest of the claim goes back untouched
            for leftover in items[index + 1:]:
                queue_service.release_claim(db, leftover)
            results.append(
                DispatchResult(
                    queue_item_id=item.id, phone_number=item.phone_number, status="released", error=exc.message
                )
            )
            break
        results.append(DispatchResult(**outcome))

    dispatched = sum(1 for r in results if r.status == "dispatched")
    record_event(db, broadcast_id, "test_batch", requested=size, dispatched=dispatched)
    db.commit()
    return TestBatchResult(
        broadcast_id=broadcast_id,
        requested=size,
        dispatched=dispatched,
        failed=len(results) - dispatched,
        calls=results,
    )


def generate_audio(db: Session, broadcast_id: int, collaborators: Collaborators) -> AudioResult:
    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    if broadcast.ivr_mode == IvrMode.AI_CONVERSATIONAL:
        raise InvalidInput("AI conversational broadcasts do not use pre-rendered audio")
    text = (broadcast.message_text or "").strip()
    if not text:
        raise InvalidInput("Broadcast has no message text to render")

    audio_url = collaborators.speech.synthesize(text, broadcast.voice_id or settings.default_voice_id)
    broadcast.audio_url = audio_url
    record_event(db, broadcast_id, "audio_generated", audio_url=audio_url)
    db.commit()
    return AudioResult(broadcast_id=broadcast_id, audio_url=audio_url, generated_at=utcnow())


def reset(db: Session, broadcast_id: int) -> int:
    return queue_service.reset(db, broadcast_id)


def retry_failed(db: Session, broadcast_id: int) -> int:
    return queue_service.retry_failed(db, broadcast_id)
