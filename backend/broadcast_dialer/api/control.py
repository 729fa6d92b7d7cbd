from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..api.deps import get_operator_auth
from ..core.db import get_db
from ..integrations import Collaborators, get_collaborators
from ..schemas.control import (
    AudioResult,
    CleanupResult,
    CountResult,
    EmergencyStopResult,
    InspectionReport,
    StartRequest,
    StartResult,
    StopResult,
    TestBatchRequest,
    TestBatchResult,
)
from ..services import control_service, monitor_service

router = APIRouter(dependencies=[Depends(get_operator_auth)])


@router.post("/{broadcast_id}/start", response_model=StartResult)
def start(broadcast_id: int, payload: StartRequest | None = None, db: Session = Depends(get_db)):
    return control_service.start(db, broadcast_id, confirm=bool(payload and payload.confirm))


@router.post("/{broadcast_id}/stop", response_model=StopResult)
def stop(broadcast_id: int, db: Session = Depends(get_db)):
    return control_service.stop(db, broadcast_id)


@router.post("/{broadcast_id}/emergency-stop", response_model=EmergencyStopResult)
def emergency_stop(
    broadcast_id: int,
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    return control_service.emergency_stop(db, broadcast_id, collaborators)


@router.post("/{broadcast_id}/test-batch", response_model=TestBatchResult)
def test_batch(
    broadcast_id: int,
    payload: TestBatchRequest | None = None,
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    size = payload.size if payload else None
    return control_service.test_batch(db, broadcast_id, collaborators, size=size)


@router.post("/{broadcast_id}/retry-failed", response_model=CountResult)
def retry_failed(broadcast_id: int, db: Session = Depends(get_db)):
    count = control_service.retry_failed(db, broadcast_id)
    return CountResult(broadcast_id=broadcast_id, count=count, message=f"{count} failed lead(s) queued again")


@router.post("/{broadcast_id}/reset", response_model=CountResult)
def reset(broadcast_id: int, db: Session = Depends(get_db)):
    count = control_service.reset(db, broadcast_id)
    return CountResult(broadcast_id=broadcast_id, count=count, message=f"{count} lead(s) reset to pending")


@router.post("/{broadcast_id}/generate-audio", response_model=AudioResult)
def generate_audio(
    broadcast_id: int,
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    return control_service.generate_audio(db, broadcast_id, collaborators)


@router.post("/{broadcast_id}/cleanup", response_model=CleanupResult)
def cleanup(broadcast_id: int, threshold_seconds: int | None = None, db: Session = Depends(get_db)):
    return monitor_service.cleanup_stuck_calls(db, broadcast_id, threshold_seconds)


@router.get("/{broadcast_id}/inspect", response_model=InspectionReport)
def inspect(
    broadcast_id: int,
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    return monitor_service.inspect_calls(db, broadcast_id, collaborators)
