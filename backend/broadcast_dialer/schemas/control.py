from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

CheckStatus = Literal["pass", "warning", "fail"]


class ReadinessCheck(BaseModel):
    id: str
    label: str
    status: CheckStatus
    message: str
    fix_action: str | None = None


class ReadinessResult(BaseModel):
    broadcast_id: int
    is_ready: bool
    checks: list[ReadinessCheck]
    blocking_reasons: list[str]
    critical_failures: int
    warnings: int


class StartRequest(BaseModel):
    confirm: bool = Field(False, description="Acknowledge a high-volume start")


class StartResult(BaseModel):
    broadcast_id: int
    status: str
    stuck_calls_cleaned: int
    pending: int
    warnings: list[str] = []


class StopResult(BaseModel):
    broadcast_id: int
    status: str
    calling: int


class EmergencyStopResult(BaseModel):
    broadcast_id: int
    status: Literal["all_stopped", "partial_failure"]
    broadcast_status: str
    pending_cancelled: int
    calls_stopped: int
    calls_not_stopped: int
    failures: list[str] = []
    message: str


class DispatchResult(BaseModel):
    queue_item_id: int
    phone_number: str
    status: str
    provider_call_id: str | None = None
    from_number: str | None = None
    error: str | None = None


class TestBatchRequest(BaseModel):
    size: int = Field(10, ge=1, le=50)


class TestBatchResult(BaseModel):
    broadcast_id: int
    requested: int
    dispatched: int
    failed: int
    calls: list[DispatchResult]


class CountResult(BaseModel):
    broadcast_id: int
    count: int
    message: str


class CleanupResult(BaseModel):
    broadcast_id: int
    cleaned: int
    reset_to_pending: int
    marked_failed: int
    marked_completed: int = 0
    item_ids: list[int] = []


class InspectionEntry(BaseModel):
    queue_item_id: int
    phone_number: str
    provider_call_id: str | None
    our_status: str
    seconds_in_status: int
    provider_status: str | None = None
    provider_duration: int | None = None
    provider_answered_by: str | None = None
    mismatch: bool = False
    error: str | None = None


class InspectionReport(BaseModel):
    broadcast_id: int
    inspected_count: int
    mismatches: int
    calls: list[InspectionEntry]


class ReconcileResult(BaseModel):
    queue_item_id: int
    provider_status: str
    applied_outcome: str
    new_status: str


class AudioResult(BaseModel):
    broadcast_id: int
    audio_url: str
    generated_at: datetime
