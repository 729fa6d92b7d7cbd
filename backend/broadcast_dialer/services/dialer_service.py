"""Pacing and dispatch of outbound calls."""
import logging
import time
from urllib.parse import urlencode

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.errors import BroadcastError, NoAvailableNumber, ProviderError
from ..core.timeutils import as_utc
from ..integrations import Collaborators, CallRequest
from ..models.broadcast import Broadcast, BroadcastStatus, RoutingPolicy
from ..models.caller_id import CallerId
from ..models.queue_item import QueueItem, QueueStatus, CallOutcome
from . import broadcast_service, caller_id_service, queue_service, schedule_service, stats_service
from .event_service import record_event

logger = logging.getLogger(__name__)
settings = get_settings()

# minimum seconds between two error-rate warning events for one broadcast
ALERT_INTERVAL_SECONDS = 300


class TokenBucket:
    """Continuously refilled bucket holding at most one minute of calls."""

    def __init__(self, calls_per_minute: int, clock=time.monotonic):
        self.clock = clock
        self.capacity = float(calls_per_minute)
        self.rate = calls_per_minute / 60.0
        self.tokens = self.capacity
        self.updated_at = clock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = max(now - self.updated_at, 0.0)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.updated_at = now

    def set_rate(self, calls_per_minute: int) -> None:
        if float(calls_per_minute) == self.capacity:
            return
        self._refill()
        self.capacity = float(calls_per_minute)
        self.rate = calls_per_minute / 60.0
        self.tokens = min(self.tokens, self.capacity)

    def take(self, wanted: int) -> int:
        self._refill()
        granted = max(0, min(wanted, int(self.tokens)))
        self.tokens -= granted
        return granted

    def give_back(self, count: int) -> None:
        if count > 0:
            self.tokens = min(self.capacity, self.tokens + count)


def callback_url(kind: str, item_id: int) -> str:
    query = urlencode({"queue_item_id": item_id, "token": settings.webhook_token})
    return f"{settings.public_base_url.rstrip('/')}/api/webhooks/telephony/{kind}?{query}"


def in_flight_count(db: Session, broadcast_id: int, statuses=(QueueStatus.CALLING,)) -> int:
    return (
        db.query(func.count(QueueItem.id))
        .filter(QueueItem.broadcast_id == broadcast_id, QueueItem.status.in_(list(statuses)))
        .scalar()
        or 0
    )


def admission_capacity(db: Session, broadcast: Broadcast) -> int:
    """How many new calls may start right now, before rate limiting."""
    capacity = settings.max_concurrent_calls - in_flight_count(db, broadcast.id)
    agent_limits = [
        action.max_concurrent
        for action in broadcast_service.transfer_actions(broadcast)
        if action.destination_type == "agent" and action.max_concurrent
    ]
    if agent_limits:
        live = in_flight_count(db, broadcast.id, (QueueStatus.CALLING, QueueStatus.ANSWERED))
        capacity = min(capacity, min(agent_limits) - live)
    return max(capacity, 0)


def dispatch_item(db: Session, broadcast: Broadcast, item: QueueItem, collaborators: Collaborators) -> dict:
    """Place the call for a claimed item.

    Provider failures are recorded on the item; ``NoAvailableNumber`` releases
    the claim, pauses the broadcast and propagates.
    """
    try:
        selected = caller_id_service.select_caller_id(db, broadcast, item.phone_number)
    except NoAvailableNumber as exc:
        queue_service.release_claim(db, item, reason=exc.message)
        broadcast_service.pause_with_error(db, broadcast.id, exc.message)
        raise

    if isinstance(selected, CallerId):
        pool_entry = selected
        from_number = selected.number
    else:
        from_number = selected
        pool_entry = caller_id_service.find_pool_entry(db, broadcast.account_id, from_number)

    use_trunk = broadcast.routing == RoutingPolicy.TRUNK and (pool_entry is None or pool_entry.on_trunk)
    call = CallRequest(
        to_number=item.phone_number,
        from_number=from_number,
        answer_url=callback_url("answer", item.id),
        status_callback_url=callback_url("status", item.id),
        amd_callback_url=callback_url("amd", item.id) if broadcast.amd_enabled else None,
        via_trunk=use_trunk,
    )

    try:
        try:
            provider_call_id = collaborators.telephony.place_call(call)
        except ProviderError as exc:
            if not call.via_trunk:
                raise
            logger.warning("Trunk call for item %s failed, retrying direct: %s", item.id, exc.message)
            if pool_entry is not None:
                caller_id_service.flag_trunk_issue(db, pool_entry.id, exc.message)
            call.via_trunk = False
            provider_call_id = collaborators.telephony.place_call(call)
    except ProviderError as exc:
        logger.warning("Call for item %s failed: %s", item.id, exc.message)
        queue_service.apply_outcome(db, item, CallOutcome.FAILED, reason=exc.message)
        return {
            "queue_item_id": item.id,
            "phone_number": item.phone_number,
            "status": "failed",
            "from_number": from_number,
            "error": exc.message,
        }

    if pool_entry is not None:
        caller_id_service.record_usage(db, pool_entry.id)
    broadcast_service.increment_counters(db, broadcast.id, calls_made=1)
    queue_service.mark_dispatched(db, item, provider_call_id, from_number)
    logger.info("Dispatched item %s to %s from %s as %s", item.id, item.phone_number, from_number, provider_call_id)
    return {
        "queue_item_id": item.id,
        "phone_number": item.phone_number,
        "status": "dispatched",
        "provider_call_id": provider_call_id,
        "from_number": from_number,
    }


class Pacer:
    """Drives every active broadcast at its own calls-per-minute rate."""

    def __init__(self, session_factory, collaborators: Collaborators, clock=time.monotonic):
        self.session_factory = session_factory
        self.collaborators = collaborators
        self.clock = clock
        self.buckets: dict[int, TokenBucket] = {}
        self.last_alert: dict[int, float] = {}

    def bucket_for(self, broadcast: Broadcast) -> TokenBucket:
        bucket = self.buckets.get(broadcast.id)
        if bucket is None:
            bucket = TokenBucket(broadcast.calls_per_minute, clock=self.clock)
            self.buckets[broadcast.id] = bucket
        else:
            bucket.set_rate(broadcast.calls_per_minute)
        return bucket

    def tick(self) -> int:
        dispatched = 0
        db = self.session_factory()
        try:
            active_ids = [
                row[0]
                for row in db.query(Broadcast.id).filter(
                    Broadcast.status == BroadcastStatus.ACTIVE, Broadcast.deleted_at.is_(None)
                )
            ]
            for stale_id in set(self.buckets) - set(active_ids):
                self.buckets.pop(stale_id, None)
            for broadcast_id in active_ids:
                try:
                    dispatched += self.tick_broadcast(db, broadcast_id)
                except BroadcastError as exc:
                    db.rollback()
                    logger.warning("Pacer tick for broadcast %s stopped: %s", broadcast_id, exc.message)
        finally:
            db.close()
        return dispatched

    def tick_broadcast(self, db: Session, broadcast_id: int) -> int:
        broadcast = broadcast_service.get_broadcast(db, broadcast_id)
        if broadcast.status != BroadcastStatus.ACTIVE:
            return 0
        if broadcast_service.maybe_complete(db, broadcast):
            self.buckets.pop(broadcast_id, None)
            return 0
        allowed, reason, _ = schedule_service.is_call_allowed(broadcast)
        if not allowed:
            logger.debug("Broadcast %s skipped: %s", broadcast_id, reason)
            return 0
        if self.check_error_rate(db, broadcast):
            return 0

        capacity = admission_capacity(db, broadcast)
        if capacity <= 0:
            return 0
        bucket = self.bucket_for(broadcast)
        granted = bucket.take(capacity)
        dispatched = 0
        for used in range(granted):
            items = queue_service.claim_batch(db, broadcast_id, 1)
            if not items:
                bucket.give_back(granted - used)
                break
            item = items[0]
            db.refresh(broadcast)
            if broadcast.status != BroadcastStatus.ACTIVE:
                release_to = QueueStatus.CANCELLED if broadcast.emergency_stopped_at else QueueStatus.PENDING
                queue_service.release_claim(db, item, release_to)
                bucket.give_back(granted - used)
                break
            try:
                result = dispatch_item(db, broadcast, item, self.collaborators)
            except NoAvailableNumber:
                bucket.give_back(granted - used)
                raise
            if result["status"] == "dispatched":
                dispatched += 1
        return dispatched

    def check_error_rate(self, db: Session, broadcast: Broadcast) -> bool:
        """Pause on a high failure rate, warn on an elevated one. True when paused."""
        rate, samples = stats_service.recent_error_rate(db, broadcast.id, since=as_utc(broadcast.started_at))
        if samples < settings.error_rate_min_samples:
            return False
        if rate >= settings.error_rate_pause_threshold:
            broadcast_service.pause_with_error(
                db, broadcast.id, f"Auto-paused: {rate:.0%} of the last {samples} calls failed"
            )
            return True
        if rate >= settings.error_rate_alert_threshold:
            now = self.clock()
            if now - self.last_alert.get(broadcast.id, float("-inf")) >= ALERT_INTERVAL_SECONDS:
                self.last_alert[broadcast.id] = now
                record_event(db, broadcast.id, "error_rate_warning", rate=round(rate, 3), samples=samples)
                db.commit()
        return False
