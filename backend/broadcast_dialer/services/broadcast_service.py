import logging

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..core.errors import NotFound, InvalidTransition, ValidationError
from ..core.timeutils import utcnow
from ..models.broadcast import Broadcast, BroadcastStatus, CallerIdPolicy
from ..models.queue_item import QueueItem, QueueStatus
from ..schemas.broadcast import BroadcastCreate, BroadcastUpdate, TransferAction
from .event_service import record_event
from .phone_service import normalize_phone
from .schedule_service import is_valid_timezone

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    BroadcastStatus.DRAFT: {BroadcastStatus.ACTIVE},
    BroadcastStatus.ACTIVE: {BroadcastStatus.PAUSED, BroadcastStatus.COMPLETED},
    BroadcastStatus.PAUSED: {BroadcastStatus.ACTIVE, BroadcastStatus.COMPLETED, BroadcastStatus.DRAFT},
    BroadcastStatus.COMPLETED: {BroadcastStatus.DRAFT},
}

COUNTER_FIELDS = (
    "total_leads",
    "calls_made",
    "calls_answered",
    "transfers_completed",
    "callbacks_scheduled",
    "dnc_requests",
)


def get_broadcast(db: Session, broadcast_id: int) -> Broadcast:
    broadcast = db.get(Broadcast, broadcast_id)
    if not broadcast or broadcast.deleted_at is not None:
        raise NotFound(f"Broadcast {broadcast_id} not found")
    return broadcast


def list_broadcasts(
    db: Session,
    account_id: str | None = None,
    status: BroadcastStatus | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[Broadcast]:
    query = db.query(Broadcast).filter(Broadcast.deleted_at.is_(None))
    if account_id:
        query = query.filter(Broadcast.account_id == account_id)
    if status:
        query = query.filter(Broadcast.status == status)
    return query.order_by(Broadcast.created_at.desc()).offset(skip).limit(limit).all()


def validate_settings(broadcast: Broadcast) -> None:
    """Raise ``ValidationError`` listing every invalid setting of ``broadcast``."""
    errors: list[str] = []
    if not broadcast.calls_per_minute or broadcast.calls_per_minute <= 0:
        errors.append("calls_per_minute must be greater than 0")
    if not broadcast.max_attempts or broadcast.max_attempts < 1:
        errors.append("max_attempts must be at least 1")
    if not is_valid_timezone(broadcast.timezone):
        errors.append(f"Unknown timezone '{broadcast.timezone}'")
    if not broadcast.bypass_calling_hours and broadcast.calling_hours_start >= broadcast.calling_hours_end:
        errors.append("calling_hours_start must be before calling_hours_end")
    if broadcast.caller_id_policy == CallerIdPolicy.FIXED:
        if not broadcast.caller_id_number:
            errors.append("A fixed caller ID policy requires caller_id_number")
        elif not normalize_phone(broadcast.caller_id_number):
            errors.append("caller_id_number is not a valid phone number")

    digits = [action.get("digit") for action in broadcast.dtmf_actions or []]
    duplicates = sorted({d for d in digits if digits.count(d) > 1})
    if duplicates:
        errors.append(f"Duplicate DTMF digits: {', '.join(duplicates)}")

    if errors:
        raise ValidationError({"message": "Invalid broadcast settings", "errors": errors})


def create_broadcast(db: Session, data: BroadcastCreate) -> Broadcast:
    values = data.model_dump(exclude={"dtmf_actions"})
    broadcast = Broadcast(
        **values,
        status=BroadcastStatus.DRAFT,
        dtmf_actions=[action.model_dump(mode="json") for action in data.dtmf_actions],
    )
    if broadcast.caller_id_number:
        broadcast.caller_id_number = normalize_phone(broadcast.caller_id_number) or broadcast.caller_id_number
    validate_settings(broadcast)
    db.add(broadcast)
    db.flush()
    record_event(db, broadcast.id, "created", name=broadcast.name)
    db.commit()
    db.refresh(broadcast)
    return broadcast


def update_broadcast(db: Session, broadcast_id: int, data: BroadcastUpdate) -> Broadcast:
    broadcast = get_broadcast(db, broadcast_id)
    changes = data.model_dump(exclude_unset=True)
    if "dtmf_actions" in changes:
        changes["dtmf_actions"] = [action.model_dump(mode="json") for action in data.dtmf_actions or []]
    if changes.get("caller_id_number"):
        changes["caller_id_number"] = normalize_phone(changes["caller_id_number"]) or changes["caller_id_number"]

    previous = {field: getattr(broadcast, field) for field in changes}
    for field, value in changes.items():
        setattr(broadcast, field, value)
    try:
        validate_settings(broadcast)
    except ValidationError:
        for field, value in previous.items():
            setattr(broadcast, field, value)
        raise

    # new wording or voice makes the rendered audio stale
    if ("message_text" in changes and changes["message_text"] != previous["message_text"]) or (
        "voice_id" in changes and changes["voice_id"] != previous["voice_id"]
    ):
        broadcast.audio_url = None
    db.commit()
    db.refresh(broadcast)
    return broadcast


def delete_broadcast(db: Session, broadcast_id: int) -> None:
    broadcast = get_broadcast(db, broadcast_id)
    if broadcast.status == BroadcastStatus.ACTIVE:
        raise InvalidTransition("Stop the broadcast before deleting it")
    broadcast.deleted_at = utcnow()
    record_event(db, broadcast.id, "deleted")
    db.commit()


def transition(db: Session, broadcast: Broadcast, target: BroadcastStatus, **payload) -> Broadcast:
    """Move ``broadcast`` to ``target`` inside the caller's transaction."""
    current = broadcast.status
    if target == current:
        return broadcast
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Cannot move broadcast from {current.value} to {target.value}")
    broadcast.status = target
    record_event(db, broadcast.id, "status_changed", previous=current.value, status=target.value, **payload)
    return broadcast


def pause_with_error(db: Session, broadcast_id: int, message: str) -> Broadcast:
    broadcast = get_broadcast(db, broadcast_id)
    broadcast.last_error = message[:1000]
    broadcast.last_error_at = utcnow()
    if broadcast.status == BroadcastStatus.ACTIVE:
        transition(db, broadcast, BroadcastStatus.PAUSED, reason=message)
    logger.warning("Broadcast %s paused: %s", broadcast_id, message)
    db.commit()
    return broadcast


def increment_counters(db: Session, broadcast_id: int, **deltas: int) -> None:
    """Atomic counter bump; concurrent webhook handlers never lose an increment."""
    values = {}
    for field, delta in deltas.items():
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Unknown counter {field}")
        if delta:
            column = getattr(Broadcast, field)
            values[field] = column + delta
    if values:
        db.execute(
            update(Broadcast).where(Broadcast.id == broadcast_id).values(**values).execution_options(synchronize_session=False)
        )


def open_item_count(db: Session, broadcast_id: int) -> int:
    return (
        db.query(func.count(QueueItem.id))
        .filter(
            QueueItem.broadcast_id == broadcast_id,
            QueueItem.status.in_([QueueStatus.PENDING, QueueStatus.CALLING]),
        )
        .scalar()
        or 0
    )


def maybe_complete(db: Session, broadcast: Broadcast) -> bool:
    if broadcast.status != BroadcastStatus.ACTIVE:
        return False
    if open_item_count(db, broadcast.id):
        return False
    transition(db, broadcast, BroadcastStatus.COMPLETED)
    db.commit()
    logger.info("Broadcast %s completed", broadcast.id)
    return True


def transfer_actions(broadcast: Broadcast) -> list[TransferAction]:
    return [TransferAction.model_validate(a) for a in broadcast.dtmf_actions or [] if a.get("action") == "transfer"]
