"""Queue manager: the only code that changes ``QueueItem.status``."""
import logging
from datetime import datetime
from uuid import uuid4

from sqlalchemy import select, update, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.errors import InvalidInput, InvalidTransition, ConcurrentUpdate, NotFound
from ..core.timeutils import utcnow
from ..models.broadcast import BroadcastStatus
from ..models.call_attempt import CallAttempt
from ..models.dialer_batch import DialerBatch
from ..models.dnc import DncEntry
from ..models.queue_item import QueueItem, QueueStatus, CallOutcome, IN_FLIGHT_STATUSES
from ..schemas.queue import EnqueueRequest, LeadRef
from . import broadcast_service
from .event_service import record_event
from .phone_service import normalize_phone
from .stats_service import get_stats  # noqa: F401  re-exported as part of the queue API

logger = logging.getLogger(__name__)

# statuses each outcome may be applied from
OUTCOME_SOURCES = {
    CallOutcome.ANSWERED: {QueueStatus.CALLING},
    CallOutcome.TRANSFERRED: {QueueStatus.CALLING, QueueStatus.ANSWERED},
    CallOutcome.CALLBACK: {QueueStatus.CALLING, QueueStatus.ANSWERED},
    CallOutcome.DNC: {QueueStatus.CALLING, QueueStatus.ANSWERED},
    CallOutcome.COMPLETED: {QueueStatus.CALLING, QueueStatus.ANSWERED},
    CallOutcome.VOICEMAIL: {QueueStatus.CALLING, QueueStatus.ANSWERED},
    CallOutcome.NO_ANSWER: {QueueStatus.CALLING},
    CallOutcome.BUSY: {QueueStatus.CALLING},
    CallOutcome.FAILED: {QueueStatus.CALLING, QueueStatus.ANSWERED},
    CallOutcome.CANCELLED: {QueueStatus.PENDING, QueueStatus.CALLING, QueueStatus.ANSWERED},
}

OUTCOME_STATUS = {
    CallOutcome.ANSWERED: QueueStatus.ANSWERED,
    CallOutcome.TRANSFERRED: QueueStatus.TRANSFERRED,
    CallOutcome.CALLBACK: QueueStatus.CALLBACK,
    CallOutcome.DNC: QueueStatus.DNC,
    CallOutcome.COMPLETED: QueueStatus.COMPLETED,
    CallOutcome.VOICEMAIL: QueueStatus.COMPLETED,
    CallOutcome.CANCELLED: QueueStatus.CANCELLED,
}

RETRYABLE_OUTCOMES = frozenset({CallOutcome.NO_ANSWER, CallOutcome.BUSY, CallOutcome.FAILED})


def _commit(db: Session) -> None:
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrentUpdate("Queue item was modified concurrently, retry the operation") from exc


def get_item(db: Session, item_id: int) -> QueueItem:
    item = db.get(QueueItem, item_id)
    if not item:
        raise NotFound(f"Queue item {item_id} not found")
    return item


def find_by_provider_call_id(db: Session, provider_call_id: str) -> QueueItem | None:
    return db.query(QueueItem).filter(QueueItem.provider_call_id == provider_call_id).first()


def list_items(
    db: Session,
    broadcast_id: int,
    status: QueueStatus | None = None,
    skip: int = 0,
    limit: int = 100,
) -> list[QueueItem]:
    query = db.query(QueueItem).filter(QueueItem.broadcast_id == broadcast_id)
    if status:
        query = query.filter(QueueItem.status == status)
    return query.order_by(QueueItem.id).offset(skip).limit(limit).all()


def enqueue(db: Session, broadcast_id: int, payload: EnqueueRequest, lead_directory=None) -> dict:
    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    leads: list[LeadRef] = list(payload.leads)
    leads += [LeadRef(phone_number=number) for number in payload.phone_numbers]
    if payload.lead_ids:
        if lead_directory is None:
            raise InvalidInput("lead_ids require a configured lead directory")
        for record in lead_directory.get_leads(payload.lead_ids):
            leads.append(LeadRef(phone_number=record.phone_number, lead_id=record.lead_id, name=record.name))
    if not leads:
        raise InvalidInput("No leads supplied")

    normalized: list[tuple[LeadRef, str]] = []
    invalid_numbers: list[str] = []
    for lead in leads:
        number = normalize_phone(lead.phone_number)
        if number:
            normalized.append((lead, number))
        else:
            invalid_numbers.append(lead.phone_number)

    numbers = {number for _, number in normalized}
    existing = set(
        row[0]
        for row in db.execute(
            select(QueueItem.phone_number).where(
                QueueItem.broadcast_id == broadcast_id, QueueItem.phone_number.in_(list(numbers))
            )
        )
    )
    blocked = set(
        row[0]
        for row in db.execute(
            select(DncEntry.phone_number).where(
                DncEntry.account_id == broadcast.account_id, DncEntry.phone_number.in_(list(numbers))
            )
        )
    )

    added = skipped = dnc_filtered = 0
    seen: set[str] = set()
    for lead, number in normalized:
        if number in blocked:
            dnc_filtered += 1
            continue
        if number in existing or number in seen:
            skipped += 1
            continue
        seen.add(number)
        db.add(
            QueueItem(
                broadcast_id=broadcast_id,
                lead_id=lead.lead_id,
                lead_name=lead.name,
                phone_number=number,
                status=QueueStatus.PENDING,
                max_attempts=broadcast.max_attempts,
            )
        )
        added += 1

    broadcast_service.increment_counters(db, broadcast_id, total_leads=added)
    if added:
        record_event(db, broadcast_id, "leads_added", added=added, skipped=skipped, dnc_filtered=dnc_filtered)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConcurrentUpdate("Leads were added concurrently, retry the operation") from exc

    logger.info(
        "Enqueued broadcast=%s added=%s skipped=%s dnc=%s invalid=%s",
        broadcast_id,
        added,
        skipped,
        dnc_filtered,
        len(invalid_numbers),
    )
    return {
        "added": added,
        "skipped": skipped,
        "dnc_filtered": dnc_filtered,
        "invalid": len(invalid_numbers),
        "invalid_samples": invalid_numbers[:5],
    }


def claim_batch(db: Session, broadcast_id: int, size: int, source: str = "pacer") -> list[QueueItem]:
    """Claim up to ``size`` due pending items and move them to ``calling``.

    Rows are locked with ``SKIP LOCKED`` so concurrent claimers never receive
    the same item. The provider call id stays empty until dispatch.
    """
    if size <= 0:
        return []
    now = utcnow()
    stmt = (
        select(QueueItem)
        .where(
            QueueItem.broadcast_id == broadcast_id,
            QueueItem.status == QueueStatus.PENDING,
            or_(QueueItem.scheduled_at.is_(None), QueueItem.scheduled_at <= now),
        )
        .order_by(QueueItem.id)
        .limit(size)
        .with_for_update(skip_locked=True)
    )
    items = db.execute(stmt).scalars().all()
    batch_id = uuid4().hex
    for item in items:
        item.status = QueueStatus.CALLING
        item.claim_batch_id = batch_id
        item.claimed_at = now
        item.provider_call_id = None
    db.add(
        DialerBatch(
            id=batch_id,
            broadcast_id=broadcast_id,
            source=source,
            requested_size=size,
            returned_size=len(items),
        )
    )
    _commit(db)
    return items


def mark_dispatched(db: Session, item: QueueItem, provider_call_id: str, from_number: str) -> QueueItem:
    item.provider_call_id = provider_call_id
    item.caller_id_used = from_number
    _commit(db)
    return item


def release_claim(db: Session, item: QueueItem, status: QueueStatus = QueueStatus.PENDING, reason: str | None = None) -> QueueItem:
    """Undo a claim without counting an attempt."""
    if item.status != QueueStatus.CALLING:
        raise InvalidTransition(f"Cannot release item {item.id} in {item.status.value}")
    if status not in (QueueStatus.PENDING, QueueStatus.CANCELLED):
        raise InvalidTransition(f"Cannot release a claim to {status.value}")
    item.status = status
    item.claim_batch_id = None
    item.claimed_at = None
    item.provider_call_id = None
    if reason:
        item.last_error = reason[:1000]
    _commit(db)
    return item


def apply_outcome(
    db: Session,
    item: QueueItem | int,
    outcome: CallOutcome,
    *,
    reason: str | None = None,
    digit: str | None = None,
    duration: int | None = None,
    amd_result: str | None = None,
    callback_at: datetime | None = None,
    commit: bool = True,
) -> QueueItem:
    if isinstance(item, int):
        item = get_item(db, item)
    previous = item.status
    if previous not in OUTCOME_SOURCES[outcome]:
        raise InvalidTransition(f"Cannot apply {outcome.value} to item {item.id} in {previous.value}")

    leaving_calling = previous == QueueStatus.CALLING
    if leaving_calling:
        item.attempt_count += 1

    if outcome in RETRYABLE_OUTCOMES:
        target = QueueStatus.PENDING if item.attempt_count < item.max_attempts else QueueStatus.FAILED
    else:
        target = OUTCOME_STATUS[outcome]

    if digit is not None:
        item.dtmf_digit = digit
    if duration is not None:
        item.call_duration_seconds = duration
    if amd_result is not None:
        item.amd_result = amd_result
    if callback_at is not None:
        item.callback_scheduled_at = callback_at
    if reason:
        item.last_error = reason[:1000]

    # an attempt is over unless the call is still up
    if target != QueueStatus.ANSWERED:
        db.add(
            CallAttempt(
                queue_item_id=item.id,
                broadcast_id=item.broadcast_id,
                provider_call_id=item.provider_call_id,
                from_number=item.caller_id_used,
                outcome=outcome.value,
                reason=reason,
                attempted_at=utcnow(),
            )
        )

    item.status = target
    if target == QueueStatus.PENDING:
        item.provider_call_id = None
        item.caller_id_used = None
        item.claim_batch_id = None
        item.claimed_at = None

    counters = {}
    if leaving_calling and outcome in (
        CallOutcome.ANSWERED,
        CallOutcome.TRANSFERRED,
        CallOutcome.CALLBACK,
        CallOutcome.DNC,
    ):
        counters["calls_answered"] = 1
    if outcome == CallOutcome.TRANSFERRED:
        counters["transfers_completed"] = 1
    elif outcome == CallOutcome.CALLBACK:
        counters["callbacks_scheduled"] = 1
    elif outcome == CallOutcome.DNC:
        counters["dnc_requests"] = 1
    broadcast_service.increment_counters(db, item.broadcast_id, **counters)

    if commit:
        _commit(db)
    logger.info(
        "Item %s %s -> %s via %s (attempt %s/%s)",
        item.id,
        previous.value,
        target.value,
        outcome.value,
        item.attempt_count,
        item.max_attempts,
    )
    return item


def _reopen(db: Session, broadcast_id: int) -> None:
    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    if broadcast.status == BroadcastStatus.ACTIVE:
        raise InvalidTransition("Stop the broadcast first")
    if broadcast.status in (BroadcastStatus.COMPLETED, BroadcastStatus.PAUSED):
        broadcast_service.transition(db, broadcast, BroadcastStatus.DRAFT)


def reset(db: Session, broadcast_id: int) -> int:
    """Put every item back to ``pending`` and zero the broadcast counters."""
    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    if broadcast.status == BroadcastStatus.ACTIVE:
        raise InvalidTransition("Stop the broadcast before resetting it")

    # scheduled callbacks belong to the previous run
    auto_callbacks = [
        row[0]
        for row in db.execute(
            select(QueueItem.id).where(QueueItem.broadcast_id == broadcast_id, QueueItem.callback_of_id.is_not(None))
        )
    ]
    if auto_callbacks:
        _delete_items(db, auto_callbacks)

    result = db.execute(
        update(QueueItem)
        .where(QueueItem.broadcast_id == broadcast_id, QueueItem.status != QueueStatus.PENDING)
        .values(status=QueueStatus.PENDING, version=QueueItem.version + 1)
        .execution_options(synchronize_session=False)
    )
    reset_count = result.rowcount
    db.execute(
        update(QueueItem)
        .where(QueueItem.broadcast_id == broadcast_id)
        .values(
            attempt_count=0,
            dtmf_digit=None,
            callback_scheduled_at=None,
            scheduled_at=None,
            provider_call_id=None,
            caller_id_used=None,
            claim_batch_id=None,
            claimed_at=None,
            amd_result=None,
            call_duration_seconds=None,
            last_error=None,
            version=QueueItem.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    remaining = db.query(QueueItem).filter(QueueItem.broadcast_id == broadcast_id).count()

    for field in broadcast_service.COUNTER_FIELDS:
        setattr(broadcast, field, 0)
    broadcast.total_leads = remaining
    broadcast.last_error = None
    broadcast.last_error_at = None
    broadcast.emergency_stopped_at = None
    _reopen(db, broadcast_id)
    record_event(db, broadcast_id, "queue_reset", reset=reset_count)
    db.commit()
    return reset_count


def cancel_pending(db: Session, broadcast_id: int) -> int:
    result = db.execute(
        update(QueueItem)
        .where(QueueItem.broadcast_id == broadcast_id, QueueItem.status == QueueStatus.PENDING)
        .values(status=QueueStatus.CANCELLED, version=QueueItem.version + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount


def retry_failed(db: Session, broadcast_id: int) -> int:
    broadcast_service.get_broadcast(db, broadcast_id)
    result = db.execute(
        update(QueueItem)
        .where(QueueItem.broadcast_id == broadcast_id, QueueItem.status == QueueStatus.FAILED)
        .values(
            status=QueueStatus.PENDING,
            attempt_count=0,
            last_error=None,
            provider_call_id=None,
            caller_id_used=None,
            claim_batch_id=None,
            claimed_at=None,
            version=QueueItem.version + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    retried = result.rowcount
    if retried:
        broadcast = broadcast_service.get_broadcast(db, broadcast_id)
        if broadcast.status == BroadcastStatus.COMPLETED:
            broadcast_service.transition(db, broadcast, BroadcastStatus.DRAFT)
        record_event(db, broadcast_id, "failed_retried", retried=retried)
    db.commit()
    return retried


def _delete_items(db: Session, item_ids: list[int]) -> int:
    db.execute(
        update(QueueItem)
        .where(QueueItem.callback_of_id.in_(item_ids))
        .values(callback_of_id=None)
        .execution_options(synchronize_session=False)
    )
    db.execute(delete(CallAttempt).where(CallAttempt.queue_item_id.in_(item_ids)))
    result = db.execute(delete(QueueItem).where(QueueItem.id.in_(item_ids)).execution_options(synchronize_session=False))
    return result.rowcount


def remove_items(db: Session, broadcast_id: int, item_ids: list[int]) -> int:
    """Delete the given items unless a call is in flight for them."""
    broadcast_service.get_broadcast(db, broadcast_id)
    ids = [
        row[0]
        for row in db.execute(
            select(QueueItem.id).where(
                QueueItem.broadcast_id == broadcast_id,
                QueueItem.id.in_(item_ids),
                QueueItem.status.not_in(list(IN_FLIGHT_STATUSES)),
            )
        )
    ]
    if not ids:
        return 0
    removed = _delete_items(db, ids)
    broadcast_service.increment_counters(db, broadcast_id, total_leads=-removed)
    record_event(db, broadcast_id, "items_removed", removed=removed)
    db.commit()
    return removed


def clear_pending(db: Session, broadcast_id: int) -> int:
    broadcast_service.get_broadcast(db, broadcast_id)
    ids = [
        row[0]
        for row in db.execute(
            select(QueueItem.id).where(QueueItem.broadcast_id == broadcast_id, QueueItem.status == QueueStatus.PENDING)
        )
    ]
    if not ids:
        return 0
    return remove_items(db, broadcast_id, ids)


def schedule_callback_item(db: Session, item: QueueItem, call_at: datetime) -> QueueItem:
    """Stage a single-attempt follow-up call for ``item``'s lead."""
    follow_up = QueueItem(
        broadcast_id=item.broadcast_id,
        lead_id=item.lead_id,
        lead_name=item.lead_name,
        phone_number=item.phone_number,
        status=QueueStatus.PENDING,
        max_attempts=1,
        scheduled_at=call_at,
        callback_of_id=item.id,
    )
    db.add(follow_up)
    broadcast_service.increment_counters(db, item.broadcast_id, total_leads=1)
    return follow_up
