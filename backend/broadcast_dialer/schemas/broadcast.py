from datetime import datetime, time
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ..models.broadcast import BroadcastStatus, IvrMode, AmdAction, CallerIdPolicy, RoutingPolicy

DIGIT_PATTERN = r"^[0-9*#]$"


class CallbackOptions(BaseModel):
    create_calendar_event: bool = True
    send_sms_reminder: bool = True
    sms_reminder_hours_before: int = Field(1, ge=0, le=72)
    sms_reminder_template: str | None = None
    auto_callback_call: bool = False


class TransferAction(BaseModel):
    action: Literal["transfer"] = "transfer"
    digit: str = Field(..., pattern=DIGIT_PATTERN)
    transfer_to: str | None = None
    destination_type: Literal["phone", "agent"] = "phone"
    max_concurrent: int | None = Field(default=None, ge=1, description="Agent concurrency ceiling")


class CallbackAction(BaseModel):
    action: Literal["callback"] = "callback"
    digit: str = Field(..., pattern=DIGIT_PATTERN)
    delay_hours: float = Field(24, gt=0, le=720)
    callback_options: CallbackOptions = Field(default_factory=CallbackOptions)


class DncAction(BaseModel):
    action: Literal["dnc"] = "dnc"
    digit: str = Field(..., pattern=DIGIT_PATTERN)


class ReplayAction(BaseModel):
    action: Literal["replay"] = "replay"
    digit: str = Field(..., pattern=DIGIT_PATTERN)


DtmfAction = Annotated[
    Union[TransferAction, CallbackAction, DncAction, ReplayAction],
    Field(discriminator="action"),
]
DTMF_ACTIONS_ADAPTER = TypeAdapter(list[DtmfAction])


def parse_dtmf_actions(raw: list | None) -> list[DtmfAction]:
    return DTMF_ACTIONS_ADAPTER.validate_python(raw or [])


class BroadcastBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    message_text: str | None = None
    voice_id: str | None = None
    voicemail_audio_url: str | None = None
    ivr_mode: IvrMode = IvrMode.DTMF
    dtmf_actions: list[DtmfAction] = Field(default_factory=list)
    calls_per_minute: int = Field(50, gt=0, le=1000)
    max_attempts: int = Field(1, ge=1, le=10)
    timezone: str = "America/New_York"
    calling_hours_start: time = time(9, 0)
    calling_hours_end: time = time(21, 0)
    bypass_calling_hours: bool = False
    caller_id_policy: CallerIdPolicy = CallerIdPolicy.AUTO
    caller_id_number: str | None = None
    enable_local_presence: bool = True
    amd_enabled: bool = True
    amd_action: AmdAction = AmdAction.HANGUP
    routing: RoutingPolicy = RoutingPolicy.DIRECT


class BroadcastCreate(BroadcastBase):
    account_id: str = Field(..., min_length=1, max_length=64)


class BroadcastUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    message_text: str | None = None
    voice_id: str | None = None
    voicemail_audio_url: str | None = None
    ivr_mode: IvrMode | None = None
    dtmf_actions: list[DtmfAction] | None = None
    calls_per_minute: int | None = Field(default=None, gt=0, le=1000)
    max_attempts: int | None = Field(default=None, ge=1, le=10)
    timezone: str | None = None
    calling_hours_start: time | None = None
    calling_hours_end: time | None = None
    bypass_calling_hours: bool | None = None
    caller_id_policy: CallerIdPolicy | None = None
    caller_id_number: str | None = None
    enable_local_presence: bool | None = None
    amd_enabled: bool | None = None
    amd_action: AmdAction | None = None
    routing: RoutingPolicy | None = None


class BroadcastOut(BroadcastBase):
    id: int
    account_id: str
    status: BroadcastStatus
    audio_url: str | None
    total_leads: int
    calls_made: int
    calls_answered: int
    transfers_completed: int
    callbacks_scheduled: int
    dnc_requests: int
    last_error: str | None
    last_error_at: datetime | None
    started_at: datetime | None
    emergency_stopped_at: datetime | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BroadcastEventOut(BaseModel):
    id: int
    broadcast_id: int
    kind: str
    payload: dict
    created_at: datetime

    class Config:
        from_attributes = True
