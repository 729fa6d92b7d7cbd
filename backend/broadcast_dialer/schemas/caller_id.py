from datetime import datetime, date
from pydantic import BaseModel, Field


class CallerIdOut(BaseModel):
    id: int
    account_id: str
    number: str
    area_code: str | None
    on_trunk: bool
    rotation_enabled: bool
    is_spam: bool
    quarantine_until: datetime | None
    reserved_for_inbound: bool
    max_daily_calls: int
    daily_calls: int
    usage_date: date | None
    last_used_at: datetime | None
    trunk_issue: str | None

    class Config:
        from_attributes = True


class CallerIdUpdate(BaseModel):
    rotation_enabled: bool | None = None
    is_spam: bool | None = None
    quarantine_until: datetime | None = None
    reserved_for_inbound: bool | None = None
    max_daily_calls: int | None = Field(default=None, ge=1)


class PoolSyncResult(BaseModel):
    account_id: str
    inserted: int
    updated: int
    total: int
