import logging

from sqlalchemy.orm import Session

from ..models.broadcast_event import BroadcastEvent

logger = logging.getLogger(__name__)


def record_event(db: Session, broadcast_id: int, kind: str, **payload) -> BroadcastEvent:
    """Stage an event in the caller's transaction; the caller commits."""
    event = BroadcastEvent(broadcast_id=broadcast_id, kind=kind, payload=payload)
    db.add(event)
    logger.info("broadcast=%s event=%s %s", broadcast_id, kind, payload)
    return event


def list_events(db: Session, broadcast_id: int, after_id: int = 0, limit: int = 100) -> list[BroadcastEvent]:
    return (
        db.query(BroadcastEvent)
        .filter(BroadcastEvent.broadcast_id == broadcast_id, BroadcastEvent.id > after_id)
        .order_by(BroadcastEvent.id)
        .limit(limit)
        .all()
    )
