from datetime import datetime
from sqlalchemy import String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from ..core.db import Base
from ..core.timeutils import utcnow


class DialerBatch(Base):
    __tablename__ = "dialer_batches"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    broadcast_id: Mapped[int] = mapped_column(ForeignKey("broadcasts.id"), index=True, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="pacer")
    requested_size: Mapped[int] = mapped_column(Integer, nullable=False)
    returned_size: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
