from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..api.deps import get_operator_auth
from ..core.db import get_db
from ..core.errors import NotFound
from ..integrations import Collaborators, get_collaborators
from ..models.queue_item import QueueStatus
from ..schemas.control import CountResult, ReconcileResult
from ..schemas.queue import EnqueueRequest, EnqueueResponse, QueueItemOut, RemoveItemsRequest
from ..services import broadcast_service, monitor_service, queue_service

router = APIRouter(dependencies=[Depends(get_operator_auth)])


@router.post("/{broadcast_id}/queue", response_model=EnqueueResponse)
def add_leads(
    broadcast_id: int,
    payload: EnqueueRequest,
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    result = queue_service.enqueue(db, broadcast_id, payload, lead_directory=collaborators.leads)
    return EnqueueResponse(**result)


@router.get("/{broadcast_id}/queue", response_model=list[QueueItemOut])
def list_items(
    broadcast_id: int,
    status: QueueStatus | None = Query(default=None),
    skip: int = 0,
    limit: int = Query(default=100, le=1000),
    db: Session = Depends(get_db),
):
    broadcast_service.get_broadcast(db, broadcast_id)
    return queue_service.list_items(db, broadcast_id, status=status, skip=skip, limit=limit)


@router.post("/{broadcast_id}/queue/remove", response_model=CountResult)
def remove_items(broadcast_id: int, payload: RemoveItemsRequest, db: Session = Depends(get_db)):
    removed = queue_service.remove_items(db, broadcast_id, payload.item_ids)
    return CountResult(broadcast_id=broadcast_id, count=removed, message=f"Removed {removed} item(s)")


@router.delete("/{broadcast_id}/queue/pending", response_model=CountResult)
def clear_pending(broadcast_id: int, db: Session = Depends(get_db)):
    removed = queue_service.clear_pending(db, broadcast_id)
    return CountResult(broadcast_id=broadcast_id, count=removed, message=f"Removed {removed} pending item(s)")


@router.post("/{broadcast_id}/queue/{item_id}/reconcile", response_model=ReconcileResult)
def reconcile(
    broadcast_id: int,
    item_id: int,
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    item = queue_service.get_item(db, item_id)
    if item.broadcast_id != broadcast_id:
        raise NotFound(f"Queue item {item_id} not found")
    return monitor_service.reconcile_item(db, item_id, collaborators)
