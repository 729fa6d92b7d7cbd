from datetime import datetime
from enum import Enum
from sqlalchemy import String, Integer, DateTime, ForeignKey, Enum as PgEnum, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.db import Base
from ..core.timeutils import utcnow


class QueueStatus(str, Enum):
    PENDING = "pending"
    CALLING = "calling"
    ANSWERED = "answered"
    TRANSFERRED = "transferred"
    CALLBACK = "callback"
    DNC = "dnc"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# a phone number may hold at most one item in these statuses per broadcast
OPEN_STATUSES = frozenset({QueueStatus.PENDING, QueueStatus.CALLING, QueueStatus.ANSWERED})
IN_FLIGHT_STATUSES = frozenset({QueueStatus.CALLING, QueueStatus.ANSWERED})
FINAL_STATUSES = frozenset(
    {
        QueueStatus.TRANSFERRED,
        QueueStatus.CALLBACK,
        QueueStatus.DNC,
        QueueStatus.COMPLETED,
        QueueStatus.FAILED,
        QueueStatus.CANCELLED,
    }
)

# enum columns store member names
_OPEN_WHERE = text("status IN ('PENDING', 'CALLING', 'ANSWERED')")


class CallOutcome(str, Enum):
    ANSWERED = "answered"
    TRANSFERRED = "transferred"
    CALLBACK = "callback"
    DNC = "dnc"
    COMPLETED = "completed"
    VOICEMAIL = "voicemail"
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    FAILED = "failed"
    CANCELLED = "cancelled"


class QueueItem(Base):
    __tablename__ = "queue_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    broadcast_id: Mapped[int] = mapped_column(ForeignKey("broadcasts.id"), index=True, nullable=False)
    lead_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    lead_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    status: Mapped[QueueStatus] = mapped_column(PgEnum(QueueStatus), default=QueueStatus.PENDING, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    dtmf_digit: Mapped[str | None] = mapped_column(String(4), nullable=True)
    callback_scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    provider_call_id: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    caller_id_used: Mapped[str | None] = mapped_column(String(32), nullable=True)
    claim_batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    amd_result: Mapped[str | None] = mapped_column(String(32), nullable=True)
    call_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_error: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    callback_of_id: Mapped[int | None] = mapped_column(ForeignKey("queue_items.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    broadcast = relationship("Broadcast")

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_queue_items_broadcast_status", "broadcast_id", "status"),
        Index(
            "uq_queue_items_open_phone",
            "broadcast_id",
            "phone_number",
            unique=True,
            postgresql_where=_OPEN_WHERE,
            sqlite_where=_OPEN_WHERE,
        ),
    )
