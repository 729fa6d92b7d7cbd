from datetime import datetime
from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..core.db import Base
from ..core.timeutils import utcnow


class ProcessedCallback(Base):
    __tablename__ = "processed_callbacks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_call_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    event_key: Mapped[str] = mapped_column(String(64), nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("provider_call_id", "event_key", name="uq_processed_callbacks_call_event"),)
