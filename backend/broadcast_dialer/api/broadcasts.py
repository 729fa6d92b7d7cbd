import json
import time

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ..api.deps import get_operator_auth
from ..core.db import get_db, SessionLocal
from ..models.broadcast import BroadcastStatus
from ..schemas.broadcast import BroadcastCreate, BroadcastUpdate, BroadcastOut, BroadcastEventOut
from ..schemas.control import ReadinessResult
from ..schemas.queue import BroadcastStats
from ..services import broadcast_service, event_service, readiness_service, stats_service

router = APIRouter(dependencies=[Depends(get_operator_auth)])

STREAM_POLL_SECONDS = 1.0


@router.get("/", response_model=list[BroadcastOut])
def list_broadcasts(
    account_id: str | None = None,
    status: BroadcastStatus | None = Query(default=None),
    skip: int = 0,
    limit: int = Query(default=50, le=500),
    db: Session = Depends(get_db),
):
    return broadcast_service.list_broadcasts(db, account_id=account_id, status=status, skip=skip, limit=limit)


@router.post("/", response_model=BroadcastOut, status_code=201)
def create_broadcast(payload: BroadcastCreate, db: Session = Depends(get_db)):
    return broadcast_service.create_broadcast(db, payload)


@router.get("/{broadcast_id}", response_model=BroadcastOut)
def get_broadcast(broadcast_id: int, db: Session = Depends(get_db)):
    return broadcast_service.get_broadcast(db, broadcast_id)


@router.patch("/{broadcast_id}", response_model=BroadcastOut)
def update_broadcast(broadcast_id: int, payload: BroadcastUpdate, db: Session = Depends(get_db)):
    return broadcast_service.update_broadcast(db, broadcast_id, payload)


@router.delete("/{broadcast_id}")
def delete_broadcast(broadcast_id: int, db: Session = Depends(get_db)):
    broadcast_service.delete_broadcast(db, broadcast_id)
    return {"deleted": True, "id": broadcast_id}


@router.get("/{broadcast_id}/readiness", response_model=ReadinessResult)
def readiness(broadcast_id: int, db: Session = Depends(get_db)):
    return readiness_service.check_readiness(db, broadcast_id)


@router.get("/{broadcast_id}/stats", response_model=BroadcastStats)
def stats(broadcast_id: int, db: Session = Depends(get_db)):
    return stats_service.get_stats(db, broadcast_id)


@router.get("/{broadcast_id}/events", response_model=list[BroadcastEventOut])
def list_events(
    broadcast_id: int,
    after_id: int = 0,
    limit: int = Query(default=100, le=1000),
    db: Session = Depends(get_db),
):
    broadcast_service.get_broadcast(db, broadcast_id)
    return event_service.list_events(db, broadcast_id, after_id=after_id, limit=limit)


@router.get("/{broadcast_id}/events/stream")
def stream_events(
    broadcast_id: int,
    after_id: int = 0,
    timeout: int = Query(default=300, ge=1, le=3600),
    last_event_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    broadcast_service.get_broadcast(db, broadcast_id)
    cursor = int(last_event_id) if last_event_id and last_event_id.isdigit() else after_id

    def event_source():
        nonlocal cursor
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            # the request session is gone once streaming starts
            session = SessionLocal()
            try:
                events = event_service.list_events(session, broadcast_id, after_id=cursor)
                for event in events:
                    body = BroadcastEventOut.model_validate(event).model_dump(mode="json")
                    cursor = event.id
                    yield f"id: {event.id}\nevent: {event.kind}\ndata: {json.dumps(body)}\n\n"
            finally:
                session.close()
            if not events:
                yield ": keep-alive\n\n"
            time.sleep(STREAM_POLL_SECONDS)

    return StreamingResponse(event_source(), media_type="text/event-stream")
