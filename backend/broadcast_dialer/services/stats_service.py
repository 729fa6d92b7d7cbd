from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.errors import NotFound
from ..core.timeutils import utcnow
from ..models.broadcast import Broadcast
from ..models.call_attempt import CallAttempt
from ..models.queue_item import QueueItem, QueueStatus, CallOutcome
from ..schemas.queue import BroadcastStats, StatusCount

settings = get_settings()


def get_stats(db: Session, broadcast_id: int) -> BroadcastStats:
    broadcast = db.get(Broadcast, broadcast_id)
    if not broadcast or broadcast.deleted_at is not None:
        raise NotFound(f"Broadcast {broadcast_id} not found")

    rows = (
        db.query(QueueItem.status, func.count(QueueItem.id))
        .filter(QueueItem.broadcast_id == broadcast_id)
        .group_by(QueueItem.status)
        .all()
    )
    counts = {status: count for status, count in rows}
    total = sum(counts.values())
    # zero-count statuses are listed too so dashboards get a stable shape
    status_counts = [
        StatusCount(
            status=status,
            count=counts.get(status, 0),
            percentage=(counts.get(status, 0) / total * 100) if total else 0.0,
        )
        for status in QueueStatus
    ]

    digits = (
        db.query(QueueItem.dtmf_digit, func.count(QueueItem.id))
        .filter(QueueItem.broadcast_id == broadcast_id, QueueItem.dtmf_digit.is_not(None))
        .group_by(QueueItem.dtmf_digit)
        .all()
    )
    avg_duration = (
        db.query(func.avg(QueueItem.call_duration_seconds))
        .filter(QueueItem.broadcast_id == broadcast_id, QueueItem.call_duration_seconds.is_not(None))
        .scalar()
    )

    return BroadcastStats(
        broadcast_id=broadcast.id,
        broadcast_status=broadcast.status.value,
        total=total,
        status_counts=status_counts,
        calls_made=broadcast.calls_made,
        calls_answered=broadcast.calls_answered,
        transfers_completed=broadcast.transfers_completed,
        callbacks_scheduled=broadcast.callbacks_scheduled,
        dnc_requests=broadcast.dnc_requests,
        dtmf_breakdown={digit: count for digit, count in digits},
        avg_duration_seconds=int(round(avg_duration or 0)),
        potentially_stuck=stuck_count(db, broadcast_id),
    )


def stuck_condition(broadcast_id: int, threshold_seconds: int | None = None):
    """Calls whose status callback is overdue.

    Answered calls stay quiet while the message plays, so they get the longer
    of the two thresholds.
    """
    threshold = threshold_seconds or settings.stuck_call_threshold_seconds
    now = utcnow()
    answered_cutoff = now - timedelta(seconds=max(threshold, settings.stuck_answered_threshold_seconds))
    return and_(
        QueueItem.broadcast_id == broadcast_id,
        or_(
            and_(QueueItem.status == QueueStatus.CALLING, QueueItem.updated_at <= now - timedelta(seconds=threshold)),
            and_(QueueItem.status == QueueStatus.ANSWERED, QueueItem.updated_at <= answered_cutoff),
        ),
    )


def stuck_count(db: Session, broadcast_id: int, threshold_seconds: int | None = None) -> int:
    return (
        db.query(func.count(QueueItem.id))
        .filter(stuck_condition(broadcast_id, threshold_seconds))
        .scalar()
        or 0
    )


def recent_error_rate(
    db: Session, broadcast_id: int, window: int | None = None, since: datetime | None = None
) -> tuple[float, int]:
    """Share of ``failed`` outcomes among the most recent finished attempts.

    Returns ``(rate, sample_size)``.
    """
    window = window or settings.error_rate_window
    query = db.query(CallAttempt.outcome).filter(CallAttempt.broadcast_id == broadcast_id)
    if since is not None:
        query = query.filter(CallAttempt.attempted_at >= since)
    rows = query.order_by(CallAttempt.id.desc()).limit(window).all()
    outcomes = [row[0] for row in rows]
    if not outcomes:
        return 0.0, 0
    failed = sum(1 for outcome in outcomes if outcome == CallOutcome.FAILED.value)
    return failed / len(outcomes), len(outcomes)
