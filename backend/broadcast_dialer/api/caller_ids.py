from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..api.deps import get_operator_auth
from ..core.db import get_db
from ..integrations import Collaborators, get_collaborators
from ..schemas.caller_id import CallerIdOut, CallerIdUpdate, PoolSyncResult
from ..services import caller_id_service

router = APIRouter(dependencies=[Depends(get_operator_auth)])


@router.get("/{account_id}", response_model=list[CallerIdOut])
def list_pool(account_id: str, healthy_only: bool = False, db: Session = Depends(get_db)):
    if healthy_only:
        return caller_id_service.healthy_pool(db, account_id)
    return caller_id_service.list_pool(db, account_id)


@router.post("/{account_id}/sync", response_model=PoolSyncResult)
def sync_pool(
    account_id: str,
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    result = caller_id_service.sync_pool(db, account_id, collaborators.phone_directory)
    return PoolSyncResult(**result)


@router.patch("/numbers/{caller_id_id}", response_model=CallerIdOut)
def update_caller_id(caller_id_id: int, payload: CallerIdUpdate, db: Session = Depends(get_db)):
    return caller_id_service.update_caller_id(db, caller_id_id, payload)
