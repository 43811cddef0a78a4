"""
Batch Processor Domain Entities.

- WorkItem: one roster row to grant (derived fresh from each read)
- CheckpointState: the only state that crosses invocation boundaries
- ContainerPermissionSnapshot: resolved access-control state for one batch
- PendingWrite: buffered status cell write
- JobSummary / StepResult: what one invocation reports

Status values for the executor follow the state machine:
IDLE -> RUNNING -> {QUOTA_PAUSED, COMPLETED, ERROR_ABORT}
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ExecutorState(str, Enum):
    """
    Batch executor states.

    - QUOTA_PAUSED: re-entry to RUNNING is scheduled after a cooldown
    - COMPLETED: checkpoint cleared, pending re-invocations removed
    - ERROR_ABORT: configuration failure, nothing was mutated
    """

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    QUOTA_PAUSED = "QUOTA_PAUSED"
    COMPLETED = "COMPLETED"
    ERROR_ABORT = "ERROR_ABORT"


class GrantLevel(str, Enum):
    """Access level granted to a principal."""

    VIEW = "view"
    COMMENT = "comment"


class ResourceKind(str, Enum):
    """Kinds of remote objects, used to look up supported grant levels."""

    FOLDER = "folder"
    FILE = "file"


@dataclass(frozen=True)
class RemoteHandle:
    """Opaque reference to a remote container or file."""

    resource_id: str
    name: str = ""
    kind: ResourceKind = ResourceKind.FILE
    mime_type: Optional[str] = None
    web_url: Optional[str] = None


@dataclass(frozen=True)
class WorkItem:
    """A roster row to process. Row numbers are 1-based sheet rows."""

    row_number: int
    principal: str
    container_id: str


@dataclass
class CheckpointState:
    """
    Persisted resume position for one job.

    cursor_row points at the first row whose status was unknown when the
    checkpoint was written. It never decreases within one job lifetime.
    """

    cursor_row: int
    continuous_mode: bool = False

    def __post_init__(self):
        if self.cursor_row < 2:
            raise ValueError(f"cursor_row must be >= 2, got {self.cursor_row}")


@dataclass
class ChildPermissionSnapshot:
    """Access-control snapshot for one child of a container."""

    handle: RemoteHandle
    authorized_principals: set = field(default_factory=set)
    name: str = ""
    resolution_failed: bool = False


@dataclass
class ContainerPermissionSnapshot:
    """
    Access-control snapshot for one container and its children.

    Lives for one batch only. resolution_failed with rate_limited=True means
    the row should be deferred; without rate_limited it is a per-container
    remote error recorded in `error`.
    principals_unknown means the container was found but its own principals
    could not be read.
    """

    container_id: str
    handle: Optional[RemoteHandle] = None
    authorized_principals: set = field(default_factory=set)
    children: list = field(default_factory=list)
    resolution_failed: bool = False
    rate_limited: bool = False
    error: Optional[str] = None
    principals_unknown: bool = False

    @classmethod
    def failed(
        cls,
        container_id: str,
        error: str,
        rate_limited: bool = False,
    ) -> "ContainerPermissionSnapshot":
        """Create a snapshot for a container that could not be resolved."""
        return cls(
            container_id=container_id,
            resolution_failed=True,
            rate_limited=rate_limited,
            error=error,
        )

    def missing_targets(self, principal: str) -> list:
        """
        Handles the principal still needs a grant on, container first.

        The container and children whose principals could not be read are
        included: a failed lookup falls through to attempting the grant.
        """
        principal = principal.lower()
        targets = []
        if self.handle is not None and (
            self.principals_unknown or principal not in self.authorized_principals
        ):
            targets.append(self.handle)
        for child in self.children:
            if child.resolution_failed or principal not in child.authorized_principals:
                targets.append(child.handle)
        return targets

    def record_grant(self, handle: RemoteHandle, principal: str) -> None:
        """Update the cached principal sets after a successful grant."""
        principal = principal.lower()
        if self.handle is not None and handle.resource_id == self.handle.resource_id:
            self.authorized_principals.add(principal)
            self.principals_unknown = False
            return
        for child in self.children:
            if child.handle.resource_id == handle.resource_id:
                child.authorized_principals.add(principal)
                child.resolution_failed = False


@dataclass(frozen=True)
class PendingWrite:
    """A buffered single-cell write. Columns are 1-based."""

    row_number: int
    column_index: int
    value: Any


@dataclass(frozen=True)
class RowError:
    """A per-row failure surfaced in the job summary."""

    row_number: int
    message: str

    def __str__(self) -> str:
        return f"Row {self.row_number}: {self.message}"


@dataclass
class JobSummary:
    """
    Counters for one invocation.

    `errors` is a bounded preview; `error_count` is the true total.
    """

    success: int = 0
    skipped: int = 0
    error_count: int = 0
    quota_pauses: int = 0
    deferred: int = 0
    already_had_access: int = 0
    grants_issued: int = 0
    errors: list = field(default_factory=list)
    error_preview_limit: int = 10

    def add_error(self, row_number: int, message: str) -> RowError:
        """Count an error and keep it in the preview if there is room."""
        error = RowError(row_number=row_number, message=message)
        self.error_count += 1
        if len(self.errors) < self.error_preview_limit:
            self.errors.append(error)
        return error

    def to_dict(self) -> dict:
        """Convert summary to a plain dictionary."""
        return {
            "success": self.success,
            "skipped": self.skipped,
            "errors": self.error_count,
            "quota_pauses": self.quota_pauses,
            "deferred": self.deferred,
            "already_had_access": self.already_had_access,
            "grants_issued": self.grants_issued,
            "error_preview": [str(e) for e in self.errors],
        }

    def format(self) -> str:
        """Human-readable one-paragraph summary."""
        text = (
            f"Success: {self.success}, Skipped: {self.skipped}, "
            f"Errors: {self.error_count}, Quota pauses: {self.quota_pauses}"
        )
        if self.deferred:
            text += f", Deferred: {self.deferred}"
        if self.errors:
            text += "\n" + "\n".join(str(e) for e in self.errors)
            hidden = self.error_count - len(self.errors)
            if hidden > 0:
                text += f"\n... and {hidden} more (see log)"
        return text


@dataclass
class StepResult:
    """Outcome of one batch executor invocation."""

    job_name: str
    state: ExecutorState
    summary: JobSummary
    cursor_row: Optional[int] = None
    next_delay_seconds: Optional[int] = None
    terminal_rows: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert result to a plain dictionary."""
        return {
            "job_name": self.job_name,
            "state": self.state.value,
            "summary": self.summary.to_dict(),
            "cursor_row": self.cursor_row,
            "next_delay_seconds": self.next_delay_seconds,
            "terminal_rows": self.terminal_rows,
            "error": self.error,
        }


def is_terminal_value(value: Any, sentinel: str = "yes") -> bool:
    """Check whether a status cell holds the completion sentinel."""
    if value is None:
        return False
    return str(value).strip().lower() == sentinel.lower()


@dataclass(frozen=True)
class Trigger:
    """A pending time-delayed re-invocation of a job. fire_at is epoch seconds."""

    trigger_id: str
    job_name: str
    fire_at: float
    created_at: str
