"""
Access-grant batch processor core.

- entities / errors: domain types and exception taxonomy
- persistence / checkpoint: durable state (SQLite) and resume position
- permission_cache / write_compactor: per-batch remote-call reduction
- scheduler_bridge / trigger_runner: time-delayed re-invocation
- executor / service: the batch step and its wiring (import directly)
"""

from .entities import (
    CheckpointState,
    ContainerPermissionSnapshot,
    ChildPermissionSnapshot,
    ExecutorState,
    GrantLevel,
    JobSummary,
    PendingWrite,
    RemoteHandle,
    ResourceKind,
    RowError,
    StepResult,
    Trigger,
    WorkItem,
    is_terminal_value,
)
from .errors import (
    ProvisioningError,
    ConfigurationError,
    RateLimitError,
    RemoteOperationError,
    JobNotFoundError,
)
from .persistence import StateDatabase
from .checkpoint import CheckpointStore
from .write_compactor import WriteCompactor, compact_runs
from .scheduler_bridge import SchedulerBridge, SqliteSchedulerBridge

__all__ = [
    # Entities
    "CheckpointState",
    "ContainerPermissionSnapshot",
    "ChildPermissionSnapshot",
    "ExecutorState",
    "GrantLevel",
    "JobSummary",
    "PendingWrite",
    "RemoteHandle",
    "ResourceKind",
    "RowError",
    "StepResult",
    "Trigger",
    "WorkItem",
    "is_terminal_value",
    # Errors
    "ProvisioningError",
    "ConfigurationError",
    "RateLimitError",
    "RemoteOperationError",
    "JobNotFoundError",
    # Components
    "StateDatabase",
    "CheckpointStore",
    "WriteCompactor",
    "compact_runs",
    "SchedulerBridge",
    "SqliteSchedulerBridge",
]
