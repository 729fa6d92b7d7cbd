from datetime import datetime
from pydantic import BaseModel, Field

from ..models.queue_item import QueueStatus


class LeadRef(BaseModel):
    phone_number: str
    lead_id: str | None = None
    name: str | None = None


class EnqueueRequest(BaseModel):
    leads: list[LeadRef] = Field(default_factory=list, description="Leads with known phone numbers")
    lead_ids: list[str] = Field(default_factory=list, description="Leads resolved through the lead directory")
    phone_numbers: list[str] = Field(default_factory=list, description="Bare numbers without a lead record")


class EnqueueResponse(BaseModel):
    added: int
    skipped: int
    dnc_filtered: int
    invalid: int
    invalid_samples: list[str] = []


class RemoveItemsRequest(BaseModel):
    item_ids: list[int] = Field(..., min_length=1)


class QueueItemOut(BaseModel):
    id: int
    broadcast_id: int
    lead_id: str | None
    lead_name: str | None
    phone_number: str
    status: QueueStatus
    attempt_count: int
    max_attempts: int
    dtmf_digit: str | None
    callback_scheduled_at: datetime | None
    scheduled_at: datetime | None
    provider_call_id: str | None
    caller_id_used: str | None
    amd_result: str | None
    call_duration_seconds: int | None
    last_error: str | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StatusCount(BaseModel):
    status: QueueStatus
    count: int
    percentage: float


class BroadcastStats(BaseModel):
    broadcast_id: int
    broadcast_status: str
    total: int
    status_counts: list[StatusCount]
    calls_made: int
    calls_answered: int
    transfers_completed: int
    callbacks_scheduled: int
    dnc_requests: int
    dtmf_breakdown: dict[str, int]
    avg_duration_seconds: int
    potentially_stuck: int
