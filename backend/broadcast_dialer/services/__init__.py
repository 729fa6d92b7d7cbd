from .broadcast_service import create_broadcast, update_broadcast, delete_broadcast, get_broadcast, list_broadcasts
from .queue_service import enqueue, claim_batch, apply_outcome, reset, cancel_pending, retry_failed, get_stats
from .caller_id_service import select_caller_id, record_usage, sync_pool
from .readiness_service import check_readiness
from .control_service import start, stop, emergency_stop, test_batch, generate_audio
from .monitor_service import cleanup_stuck_calls, inspect_calls, reconcile_item, flush_dnc_retries
from .dialer_service import Pacer, TokenBucket, dispatch_item

__all__ = [
    "create_broadcast",
    "update_broadcast",
    "delete_broadcast",
    "get_broadcast",
    "list_broadcasts",
    "enqueue",
    "claim_batch",
    "apply_outcome",
    "reset",
    "cancel_pending",
    "retry_failed",
    "get_stats",
    "select_caller_id",
    "record_usage",
    "sync_pool",
    "check_readiness",
    "start",
    "stop",
    "emergency_stop",
    "test_batch",
    "generate_audio",
    "cleanup_stuck_calls",
    "inspect_calls",
    "reconcile_item",
    "flush_dnc_retries",
    "Pacer",
    "TokenBucket",
    "dispatch_item",
]
