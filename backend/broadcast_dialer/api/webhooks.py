"""Provider callbacks. Each route answers 2xx unless the token is wrong or the
form is malformed. Lost races and stale events come back as a hang-up or an
ack, so the provider never retries an event we already decided to ignore."""
from fastapi import APIRouter, Depends, Form, Query, Response
from sqlalchemy.orm import Session

from ..api.deps import verify_webhook_token
from ..core.db import get_db
from ..integrations import Collaborators, IvrInstruction, get_collaborators
from ..schemas.webhook import AgentOutcomeIn, WebhookAck
from ..services import outcome_service

router = APIRouter(dependencies=[Depends(verify_webhook_token)])


def _render(collaborators: Collaborators, instruction: IvrInstruction) -> Response:
    body, media_type = collaborators.telephony.render_instruction(instruction)
    return Response(content=body, media_type=media_type)


@router.post("/status", response_model=WebhookAck)
def status_callback(
    call_sid: str = Form(..., alias="CallSid"),
    call_status: str = Form(..., alias="CallStatus"),
    call_duration: int | None = Form(default=None, alias="CallDuration"),
    error_message: str | None = Form(default=None, alias="ErrorMessage"),
    queue_item_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return outcome_service.handle_status(
        db,
        call_sid,
        call_status,
        queue_item_id=queue_item_id,
        duration=call_duration,
        error=error_message,
    )


@router.post("/answer")
def answer(
    call_sid: str | None = Form(default=None, alias="CallSid"),
    queue_item_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    return _render(collaborators, outcome_service.handle_answer(db, call_sid, queue_item_id))


@router.post("/amd")
def amd_callback(
    call_sid: str = Form(..., alias="CallSid"),
    answered_by: str = Form(..., alias="AnsweredBy"),
    queue_item_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    return _render(collaborators, outcome_service.handle_amd(db, call_sid, answered_by, queue_item_id))


@router.post("/dtmf")
def dtmf_callback(
    call_sid: str = Form(..., alias="CallSid"),
    digits: str = Form(..., alias="Digits"),
    queue_item_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    # only the first key press counts
    instruction = outcome_service.handle_dtmf(db, call_sid, digits[:1], collaborators, queue_item_id)
    return _render(collaborators, instruction)


@router.post("/agent", response_model=WebhookAck)
def agent_outcome(
    payload: AgentOutcomeIn,
    queue_item_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    return outcome_service.handle_agent_outcome(
        db,
        payload.provider_call_id,
        payload.call_outcome,
        collaborators,
        queue_item_id=payload.queue_item_id or queue_item_id,
        callback_delay_hours=payload.callback_delay_hours,
        reason=payload.reason,
    )
