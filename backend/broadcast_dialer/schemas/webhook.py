from typing import Literal

from pydantic import BaseModel, Field

from ..models.queue_item import CallOutcome


class AgentOutcomeIn(BaseModel):
    provider_call_id: str | None = None
    queue_item_id: int | None = None
    outcome: Literal["transferred", "callback", "dnc", "completed", "failed"]
    callback_delay_hours: float | None = Field(default=None, gt=0, le=720)
    reason: str | None = None

    @property
    def call_outcome(self) -> CallOutcome:
        return CallOutcome(self.outcome)


class WebhookAck(BaseModel):
    applied: bool
    reason: str | None = None
    queue_item_id: int | None = None
    status: str | None = None
