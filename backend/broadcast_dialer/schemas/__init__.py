from .broadcast import (
    BroadcastCreate,
    BroadcastUpdate,
    BroadcastOut,
    BroadcastEventOut,
    CallbackOptions,
    DtmfAction,
    parse_dtmf_actions,
)
from .queue import EnqueueRequest, EnqueueResponse, LeadRef, QueueItemOut, BroadcastStats
from .control import (
    ReadinessCheck,
    ReadinessResult,
    StartResult,
    StopResult,
    EmergencyStopResult,
    TestBatchResult,
    CleanupResult,
    InspectionReport,
)
from .caller_id import CallerIdOut, CallerIdUpdate, PoolSyncResult

__all__ = [
    "BroadcastCreate",
    "BroadcastUpdate",
    "BroadcastOut",
    "BroadcastEventOut",
    "CallbackOptions",
    "DtmfAction",
    "parse_dtmf_actions",
    "EnqueueRequest",
    "EnqueueResponse",
    "LeadRef",
    "QueueItemOut",
    "BroadcastStats",
    "ReadinessCheck",
    "ReadinessResult",
    "StartResult",
    "StopResult",
    "EmergencyStopResult",
    "TestBatchResult",
    "CleanupResult",
    "InspectionReport",
    "CallerIdOut",
    "CallerIdUpdate",
    "PoolSyncResult",
]
