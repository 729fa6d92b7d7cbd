"""Caller-ID selection over the account's shared number pool."""
import logging
from datetime import date

from sqlalchemy import case, update, select
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.errors import NoAvailableNumber, NotFound
from ..core.timeutils import utcnow, as_utc
from ..models.broadcast import Broadcast, CallerIdPolicy
from ..models.caller_id import CallerId
from ..schemas.caller_id import CallerIdUpdate
from .phone_service import normalize_phone, area_code

logger = logging.getLogger(__name__)
settings = get_settings()


def _today() -> date:
    return utcnow().date()


def calls_today(number: CallerId, today: date | None = None) -> int:
    return number.daily_calls if number.usage_date == (today or _today()) else 0


def is_healthy(number: CallerId, now=None) -> bool:
    now = now or utcnow()
    quarantined = number.quarantine_until is not None and as_utc(number.quarantine_until) > now
    return (
        number.rotation_enabled
        and not number.is_spam
        and not quarantined
        and not number.reserved_for_inbound
        and calls_today(number, now.date()) < number.max_daily_calls
    )


def list_pool(db: Session, account_id: str) -> list[CallerId]:
    return db.query(CallerId).filter(CallerId.account_id == account_id).order_by(CallerId.id).all()


def healthy_pool(db: Session, account_id: str) -> list[CallerId]:
    now = utcnow()
    return [number for number in list_pool(db, account_id) if is_healthy(number, now)]


def spam_flagged_count(db: Session, account_id: str) -> int:
    return db.query(CallerId).filter(CallerId.account_id == account_id, CallerId.is_spam.is_(True)).count()


def select_caller_id(db: Session, broadcast: Broadcast, to_number: str) -> CallerId | str:
    """Pick the number to present for a call to ``to_number``.

    ``fixed`` returns the configured number as a string. ``auto`` prefers a
    healthy number sharing the lead's area code, then the least used today,
    breaking ties on the longest idle.
    """
    if broadcast.caller_id_policy == CallerIdPolicy.FIXED:
        if not broadcast.caller_id_number:
            raise NoAvailableNumber("Fixed caller ID policy has no number configured")
        return broadcast.caller_id_number

    candidates = healthy_pool(db, broadcast.account_id)
    if not candidates:
        raise NoAvailableNumber(f"No healthy caller IDs available for account {broadcast.account_id}")

    today = _today()

    def usage_key(number: CallerId):
        last_used = as_utc(number.last_used_at)
        return (calls_today(number, today), last_used is not None, last_used or utcnow(), number.id)

    if broadcast.enable_local_presence:
        lead_area = area_code(to_number)
        local = [n for n in candidates if lead_area and n.area_code == lead_area]
        if local:
            return min(local, key=usage_key)
    return min(candidates, key=usage_key)


def record_usage(db: Session, caller_id_id: int) -> None:
    """Count one placed call against the number, shared across broadcasts."""
    today = _today()
    db.execute(
        update(CallerId)
        .where(CallerId.id == caller_id_id)
        .values(
            daily_calls=case((CallerId.usage_date == today, CallerId.daily_calls + 1), else_=1),
            usage_date=today,
            last_used_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )


def flag_trunk_issue(db: Session, caller_id_id: int, message: str) -> None:
    db.execute(
        update(CallerId)
        .where(CallerId.id == caller_id_id)
        .values(trunk_issue=message[:500])
        .execution_options(synchronize_session=False)
    )
    logger.warning("Caller ID %s flagged with trunk issue: %s", caller_id_id, message)


def update_caller_id(db: Session, caller_id_id: int, data: CallerIdUpdate) -> CallerId:
    number = db.get(CallerId, caller_id_id)
    if not number:
        raise NotFound(f"Caller ID {caller_id_id} not found")
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(number, field, value)
    db.commit()
    db.refresh(number)
    return number


def sync_pool(db: Session, account_id: str, phone_directory) -> dict:
    """Upsert the account's numbers from the phone number directory.

    Usage counters are local and survive a sync.
    """
    remote = phone_directory.list_numbers(account_id)
    existing = {n.number: n for n in list_pool(db, account_id)}
    inserted = updated = 0
    for entry in remote:
        number = normalize_phone(entry.number)
        if not number:
            logger.warning("Skipping invalid directory number %s for account %s", entry.number, account_id)
            continue
        row = existing.get(number)
        if row is None:
            row = CallerId(account_id=account_id, number=number, area_code=area_code(number), daily_calls=0)
            db.add(row)
            existing[number] = row
            inserted += 1
        else:
            updated += 1
        row.on_trunk = entry.on_trunk
        row.rotation_enabled = entry.rotation_enabled
        row.is_spam = entry.is_spam
        row.quarantine_until = entry.quarantine_until
        row.reserved_for_inbound = entry.reserved_for_inbound
        row.max_daily_calls = entry.max_daily_calls or row.max_daily_calls or settings.default_max_daily_calls
    db.commit()
    logger.info("Synced caller IDs for account %s: inserted=%s updated=%s", account_id, inserted, updated)
    return {"account_id": account_id, "inserted": inserted, "updated": updated, "total": len(existing)}


def find_pool_entry(db: Session, account_id: str, number: str) -> CallerId | None:
    return db.execute(
        select(CallerId).where(CallerId.account_id == account_id, CallerId.number == number)
    ).scalar_one_or_none()
