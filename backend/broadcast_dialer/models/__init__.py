from .broadcast import Broadcast, BroadcastStatus, IvrMode, AmdAction, CallerIdPolicy, RoutingPolicy
from .queue_item import QueueItem, QueueStatus, CallOutcome
from .call_attempt import CallAttempt
from .caller_id import CallerId
from .dialer_batch import DialerBatch
from .callback_ledger import ProcessedCallback
from .dnc import DncEntry, DncRetry
from .broadcast_event import BroadcastEvent

__all__ = [
    "Broadcast",
    "BroadcastStatus",
    "IvrMode",
    "AmdAction",
    "CallerIdPolicy",
    "RoutingPolicy",
    "QueueItem",
    "QueueStatus",
    "CallOutcome",
    "CallAttempt",
    "CallerId",
    "DialerBatch",
    "ProcessedCallback",
    "DncEntry",
    "DncRetry",
    "BroadcastEvent",
]
