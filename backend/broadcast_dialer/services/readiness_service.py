"""Pre-flight checks run before a broadcast may start.

Nothing here writes to the database.
"""
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..models.broadcast import Broadcast, CallerIdPolicy, IvrMode
from ..models.queue_item import QueueItem, QueueStatus
from ..schemas.control import ReadinessCheck, ReadinessResult
from . import broadcast_service, caller_id_service, schedule_service, stats_service

settings = get_settings()


def _check(check_id: str, label: str, status: str, message: str, fix_action: str | None = None) -> ReadinessCheck:
    return ReadinessCheck(id=check_id, label=label, status=status, message=message, fix_action=fix_action)


def usable_caller_id_count(db: Session, broadcast: Broadcast) -> int:
    if broadcast.caller_id_policy == CallerIdPolicy.FIXED:
        return 1 if broadcast.caller_id_number else 0
    return len(caller_id_service.healthy_pool(db, broadcast.account_id))


def queue_counts(db: Session, broadcast_id: int) -> tuple[int, int]:
    """Return ``(pending, total)`` item counts."""
    rows = (
        db.query(QueueItem.status, func.count(QueueItem.id))
        .filter(QueueItem.broadcast_id == broadcast_id)
        .group_by(QueueItem.status)
        .all()
    )
    counts = {status: count for status, count in rows}
    return counts.get(QueueStatus.PENDING, 0), sum(counts.values())


def check_readiness(db: Session, broadcast_id: int) -> ReadinessResult:
    broadcast = broadcast_service.get_broadcast(db, broadcast_id)
    checks: list[ReadinessCheck] = []

    if broadcast.ivr_mode == IvrMode.AI_CONVERSATIONAL:
        checks.append(_check("audio_generated", "Audio", "pass", "Not required in AI conversational mode"))
    elif broadcast.audio_url:
        checks.append(_check("audio_generated", "Audio", "pass", "Message audio is generated"))
    else:
        checks.append(
            _check("audio_generated", "Audio", "fail", "Message audio has not been generated", "generate_audio")
        )

    if broadcast.ivr_mode == IvrMode.DTMF and not (broadcast.message_text or "").strip():
        checks.append(_check("message_text", "Message", "fail", "Broadcast has no message text", "edit_broadcast"))
    else:
        checks.append(_check("message_text", "Message", "pass", "Message text is set"))

    pending, total = queue_counts(db, broadcast.id)
    if pending:
        checks.append(_check("leads_in_queue", "Leads", "pass", f"{pending} leads waiting to be called"))
    elif total:
        checks.append(
            _check(
                "leads_in_queue",
                "Leads",
                "fail",
                f"All {total} leads have already been processed; reset the queue to call them again",
                "reset_queue",
            )
        )
    else:
        checks.append(_check("leads_in_queue", "Leads", "fail", "No leads in the queue", "add_leads"))

    usable = usable_caller_id_count(db, broadcast)
    if usable:
        checks.append(_check("phone_numbers", "Phone numbers", "pass", f"{usable} phone number(s) available"))
    else:
        checks.append(
            _check(
                "phone_numbers",
                "Phone numbers",
                "fail",
                "No healthy phone numbers available to call from",
                "sync_caller_ids",
            )
        )

    if usable and pending > usable * settings.leads_per_caller_id:
        recommended = -(-pending // settings.leads_per_caller_id)
        checks.append(
            _check(
                "pool_capacity",
                "Phone number capacity",
                "warning",
                f"{pending} leads on {usable} phone number(s); {recommended} recommended to limit spam flagging",
                "sync_caller_ids",
            )
        )

    checks.append(_calling_hours_check(broadcast))

    if broadcast.caller_id_policy == CallerIdPolicy.AUTO:
        spam = caller_id_service.spam_flagged_count(db, broadcast.account_id)
        if spam:
            checks.append(
                _check("spam_numbers", "Spam-flagged numbers", "warning", f"{spam} spam-flagged number(s) will be skipped")
            )

    stuck = stats_service.stuck_count(db, broadcast.id)
    if stuck:
        checks.append(
            _check(
                "stuck_calls",
                "Stuck calls",
                "warning",
                f"{stuck} call(s) are overdue for a status update (over "
                f"{settings.stuck_call_threshold_seconds} seconds, or {settings.stuck_answered_threshold_seconds} once answered)",
                "cleanup_stuck_calls",
            )
        )

    rate, samples = stats_service.recent_error_rate(db, broadcast.id)
    if samples >= settings.error_rate_min_samples and rate >= settings.error_rate_pause_threshold:
        checks.append(
            _check("error_rate", "Error rate", "warning", f"{rate:.0%} of the last {samples} calls failed")
        )

    if broadcast.max_attempts == 1:
        checks.append(
            _check("max_attempts", "Retries", "warning", "No-answer and busy calls will not be retried")
        )
    if broadcast.calls_per_minute > 100:
        checks.append(
            _check(
                "calls_per_minute",
                "Call rate",
                "warning",
                f"{broadcast.calls_per_minute} calls per minute may trigger carrier spam detection",
            )
        )
    missing = [a.digit for a in broadcast_service.transfer_actions(broadcast) if not a.transfer_to]
    if missing:
        checks.append(
            _check(
                "transfer_destination",
                "Transfer destination",
                "warning",
                f"Transfer on digit(s) {', '.join(missing)} has no destination",
                "edit_broadcast",
            )
        )

    failures = [c for c in checks if c.status == "fail"]
    return ReadinessResult(
        broadcast_id=broadcast.id,
        is_ready=not failures,
        checks=checks,
        blocking_reasons=[c.message for c in failures],
        critical_failures=len(failures),
        warnings=sum(1 for c in checks if c.status == "warning"),
    )


def _calling_hours_check(broadcast: Broadcast) -> ReadinessCheck:
    if broadcast.bypass_calling_hours:
        return _check("calling_hours", "Calling hours", "warning", "Calling hours are bypassed")
    minutes = schedule_service.window_minutes(broadcast)
    if minutes < settings.narrow_window_minutes:
        return _check(
            "calling_hours",
            "Calling hours",
            "warning",
            f"Calling window is only {minutes} minutes long",
            "edit_broadcast",
        )
    allowed, _, retry_after = schedule_service.is_call_allowed(broadcast)
    if not allowed:
        return _check(
            "calling_hours",
            "Calling hours",
            "warning",
            f"Currently outside calling hours; dialing resumes in {retry_after // 60} minutes",
        )
    return _check("calling_hours", "Calling hours", "pass", "Within calling hours")
