from datetime import datetime, date
from sqlalchemy import String, Integer, Boolean, Date, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..core.db import Base
from ..core.timeutils import utcnow


class CallerId(Base):
    """Local mirror of an account's outbound number, plus shared usage counters."""

    __tablename__ = "caller_ids"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    account_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    number: Mapped[str] = mapped_column(String(32), nullable=False)
    area_code: Mapped[str | None] = mapped_column(String(8), index=True, nullable=True)
    on_trunk: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rotation_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_spam: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quarantine_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reserved_for_inbound: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_daily_calls: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    daily_calls: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    usage_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trunk_issue: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("account_id", "number", name="uq_caller_ids_account_number"),)
