from datetime import datetime, time
from enum import Enum
from sqlalchemy import String, Integer, Boolean, DateTime, Time, Text, JSON, Enum as PgEnum
from sqlalchemy.orm import Mapped, mapped_column

from ..core.db import Base
from ..core.timeutils import utcnow


class BroadcastStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class IvrMode(str, Enum):
    DTMF = "dtmf"
    AI_CONVERSATIONAL = "ai_conversational"


class AmdAction(str, Enum):
    HANGUP = "hangup"
    LEAVE_MESSAGE = "leave_message"


class CallerIdPolicy(str, Enum):
    AUTO = "auto"
    FIXED = "fixed"


class RoutingPolicy(str, Enum):
    DIRECT = "direct"
    TRUNK = "trunk"


class Broadcast(Base):
    __tablename__ = "broadcasts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    account_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[BroadcastStatus] = mapped_column(PgEnum(BroadcastStatus), default=BroadcastStatus.DRAFT, nullable=False)

    message_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    voice_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    audio_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    voicemail_audio_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    ivr_mode: Mapped[IvrMode] = mapped_column(PgEnum(IvrMode), default=IvrMode.DTMF, nullable=False)
    dtmf_actions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    calls_per_minute: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    timezone: Mapped[str] = mapped_column(String(64), default="America/New_York", nullable=False)
    calling_hours_start: Mapped[time] = mapped_column(Time, default=time(9, 0), nullable=False)
    calling_hours_end: Mapped[time] = mapped_column(Time, default=time(21, 0), nullable=False)
    bypass_calling_hours: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    caller_id_policy: Mapped[CallerIdPolicy] = mapped_column(PgEnum(CallerIdPolicy), default=CallerIdPolicy.AUTO, nullable=False)
    caller_id_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    enable_local_presence: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    amd_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    amd_action: Mapped[AmdAction] = mapped_column(PgEnum(AmdAction), default=AmdAction.HANGUP, nullable=False)
    routing: Mapped[RoutingPolicy] = mapped_column(PgEnum(RoutingPolicy), default=RoutingPolicy.DIRECT, nullable=False)

    total_leads: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    calls_made: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    calls_answered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    transfers_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    callbacks_scheduled: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    dnc_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_error: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    emergency_stopped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
