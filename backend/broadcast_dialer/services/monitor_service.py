import logging

from sqlalchemy.orm import Session

from ..core.errors import ProviderError, ReconciliationMismatch, InvalidTransition
from ..core.timeutils import utcnow, as_utc
from ..integrations import Collaborators
from ..models.dnc import DncRetry
from ..models.queue_item import QueueItem, QueueStatus, CallOutcome, IN_FLIGHT_STATUSES
from ..schemas.control import InspectionEntry, InspectionReport, CleanupResult, ReconcileResult
from . import broadcast_service, queue_service
from .event_service import record_event
from .outcome_service import map_provider_status
from .stats_service import stuck_condition

logger = logging.getLogger(__name__)

STUCK_REASON = "status callback not received"
# retries of a failed DNC write before it is left for an operator
MAX_DNC_RETRIES = 10


def stuck_items(db: Session, broadcast_id: int, threshold_seconds: int | None = None) -> list[QueueItem]:
    return (
        db.query(QueueItem)
        .filter(stuck_condition(broadcast_id, threshold_seconds))
        .order_by(QueueItem.id)
        .all()
    )


def cleanup_stuck_calls(db: Session, broadcast_id: int, threshold_seconds: int | None = None) -> CleanupResult:
    """Close calls whose status callback never arrived.

    Unanswered calls fail and are retried while attempts remain. Answered calls
    reached the lead, so they are completed instead of dialed again.
    """
    broadcast_service.get_broadcast(db, broadcast_id)
    cleaned = reset_to_pending = marked_failed = marked_completed = 0
    item_ids: list[int] = []
    for item in stuck_items(db, broadcast_id, threshold_seconds):
        outcome = CallOutcome.COMPLETED if item.status == QueueStatus.ANSWERED else CallOutcome.FAILED
        try:
            queue_service.apply_outcome(db, item, outcome, reason=STUCK_REASON)
        except InvalidTransition:
            # a webhook resolved it between the query and the update
            db.rollback()
            continue
        cleaned += 1
        item_ids.append(item.id)
        if item.status == QueueStatus.PENDING:
            reset_to_pending += 1
        elif item.status == QueueStatus.COMPLETED:
            marked_completed += 1
        else:
            marked_failed += 1

    if cleaned:
        record_event(
            db,
            broadcast_id,
            "stuck_calls_cleaned",
            cleaned=cleaned,
            reset_to_pending=reset_to_pending,
            marked_failed=marked_failed,
            marked_completed=marked_completed,
        )
        db.commit()
        logger.warning("Cleaned %s stuck calls for broadcast %s", cleaned, broadcast_id)
    return CleanupResult(
        broadcast_id=broadcast_id,
        cleaned=cleaned,
        reset_to_pending=reset_to_pending,
        marked_failed=marked_failed,
        marked_completed=marked_completed,
        item_ids=item_ids,
    )


def inspect_calls(db: Session, broadcast_id: int, collaborators: Collaborators) -> InspectionReport:
    """Compare our in-flight items with the provider's view. Read-only."""
    broadcast_service.get_broadcast(db, broadcast_id)
    items = (
        db.query(QueueItem)
        .filter(
            QueueItem.broadcast_id == broadcast_id,
            QueueItem.status.in_(list(IN_FLIGHT_STATUSES)),
            QueueItem.provider_call_id.is_not(None),
        )
        .order_by(QueueItem.id)
        .all()
    )
    now = utcnow()
    entries: list[InspectionEntry] = []
    for item in items:
        entry = InspectionEntry(
            queue_item_id=item.id,
            phone_number=item.phone_number,
            provider_call_id=item.provider_call_id,
            our_status=item.status.value,
            seconds_in_status=int((now - as_utc(item.updated_at)).total_seconds()),
        )
        try:
            remote = collaborators.telephony.get_call_status(item.provider_call_id)
        except ProviderError as exc:
            entry.error = exc.message
        else:
            entry.provider_status = remote.status
            entry.provider_duration = remote.duration
            entry.provider_answered_by = remote.answered_by
            entry.error = remote.error
            entry.mismatch = not remote.is_live
        entries.append(entry)
    return InspectionReport(
        broadcast_id=broadcast_id,
        inspected_count=len(entries),
        mismatches=sum(1 for e in entries if e.mismatch),
        calls=entries,
    )


def reconcile_item(db: Session, item_id: int, collaborators: Collaborators) -> ReconcileResult:
    """Apply the provider's final status to an item the operator confirmed."""
    item = queue_service.get_item(db, item_id)
    if item.status not in IN_FLIGHT_STATUSES or not item.provider_call_id:
        raise InvalidTransition(f"Item {item_id} is not an in-flight call")
    remote = collaborators.telephony.get_call_status(item.provider_call_id)
    if remote.is_live:
        raise ReconciliationMismatch(
            {
                "message": f"Provider still reports call {item.provider_call_id} as {remote.status}",
                "provider_status": remote.status,
            }
        )
    outcome = map_provider_status(remote.status, item, remote.duration) or CallOutcome.FAILED
    queue_service.apply_outcome(
        db,
        item,
        outcome,
        reason=remote.error or f"reconciled from provider status {remote.status}",
        duration=remote.duration,
        amd_result="machine" if (remote.answered_by or "").startswith("machine") else None,
    )
    logger.info("Reconciled item %s from provider status %s", item_id, remote.status)
    return ReconcileResult(
        queue_item_id=item.id,
        provider_status=remote.status,
        applied_outcome=outcome.value,
        new_status=item.status.value,
    )


def flush_dnc_retries(db: Session, collaborators: Collaborators, limit: int = 100) -> int:
    """Re-send failed do-not-call writes; returns how many went through."""
    pending = (
        db.query(DncRetry)
        .filter(DncRetry.completed_at.is_(None), DncRetry.attempts < MAX_DNC_RETRIES)
        .order_by(DncRetry.id)
        .limit(limit)
        .all()
    )
    delivered = 0
    for retry in pending:
        retry.attempts += 1
        try:
            collaborators.leads.flag_do_not_call(retry.lead_id, retry.phone_number)
        except ProviderError as exc:
            retry.last_error = exc.message[:1000]
            logger.warning("DNC retry %s for %s failed: %s", retry.id, retry.phone_number, exc.message)
        else:
            retry.completed_at = utcnow()
            delivered += 1
        db.commit()
    return delivered
