"""
Grant Processor Test Fixtures.

In-memory fakes stand in for the remote stores:
- MemoryTabularStore: a list-of-rows table recording every write call
- MemoryObjectStore: folders/files with principal sets and failure injection
- RecordingSchedulerBridge: records schedule/cancel_all calls
"""

from typing import Any, Optional

import pytest

from src.adapters.base import ObjectStore, TabularStore
from src.grants.checkpoint import CheckpointStore
from src.grants.entities import GrantLevel, RemoteHandle, ResourceKind, Trigger
from src.grants.errors import RateLimitError, RemoteOperationError
from src.grants.persistence import StateDatabase
from src.grants.scheduler_bridge import SchedulerBridge
from src.infra.config import GrantJobConfig


ROSTER_HEADER = ["Student Email", "Student Name", "Planning Folder URL", "Access Granted", "Share Notes"]
EMAIL_COL, FOLDER_COL, STATUS_COL, NOTES_COL = 1, 3, 4, 5


def folder_id(index: int) -> str:
    """A 28-character folder identifier."""
    return f"folder{index:03d}" + "x" * 19


def folder_url(index: int) -> str:
    return f"https://drive.google.com/drive/folders/{folder_id(index)}?usp=sharing"


def email(index: int) -> str:
    return f"student{index}@school.org"


# =============================================================================
# Fakes
# =============================================================================


class MemoryTabularStore(TabularStore):
    """Table held as a list of rows; row 1 is the header."""

    def __init__(self, rows: list[list]):
        self.rows = [list(r) for r in rows]
        self.calls: list[tuple] = []
        self.write_error: Optional[Exception] = None

    def _ensure(self, row: int, column: int) -> None:
        while len(self.rows) < row:
            self.rows.append([])
        target = self.rows[row - 1]
        while len(target) < column:
            target.append("")

    def cell(self, row: int, column: int) -> Any:
        if row - 1 >= len(self.rows):
            return ""
        values = self.rows[row - 1]
        return values[column - 1] if column - 1 < len(values) else ""

    def read_range(self, row: int, column: int, num_rows: int, num_columns: int) -> list[list]:
        return [
            [self.cell(row + r, column + c) for c in range(num_columns)]
            for r in range(num_rows)
        ]

    def write_cell(self, row: int, column: int, value: Any) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.calls.append(("write_cell", row, column, value))
        self._ensure(row, column)
        self.rows[row - 1][column - 1] = value

    def write_range(self, row: int, column: int, grid: list[list]) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.calls.append(("write_range", row, column, [list(r) for r in grid]))
        for r, values in enumerate(grid):
            for c, value in enumerate(values):
                self._ensure(row + r, column + c)
                self.rows[row + r - 1][column + c - 1] = value

    def last_row(self) -> int:
        for index in range(len(self.rows) - 1, -1, -1):
            if any(str(v).strip() for v in self.rows[index]):
                return index + 1
        return 0

    def last_column(self) -> int:
        return max((len(r) for r in self.rows), default=0)


class MemoryObjectStore(ObjectStore):
    """
    Folders and files keyed by resource id.

    Failure injection:
    - rate_limit_grants: number of upcoming grant calls that raise RateLimitError
    - grant_errors: resource_id -> exception raised by every grant on it
    - container_errors: container_id -> exception raised by get_container
    - create_errors: folder name -> exception raised by create_folder
    """

    def __init__(self):
        self.handles: dict[str, RemoteHandle] = {}
        self.principals: dict[str, set] = {}
        self.children: dict[str, list] = {}
        self.grants: list[tuple] = []
        self.copies: list[tuple] = []
        self.trashed: list[str] = []
        self.rate_limit_grants = 0
        self.grant_errors: dict[str, Exception] = {}
        self.container_errors: dict[str, Exception] = {}
        self.principal_errors: dict[str, Exception] = {}
        self.lookups: list[str] = []
        self.created: list[tuple] = []
        self.create_errors: dict[str, Exception] = {}

    def add_folder(self, resource_id: str, children: int = 1, principals=(), name: str = "") -> RemoteHandle:
        handle = RemoteHandle(resource_id, name or resource_id, ResourceKind.FOLDER)
        self.handles[resource_id] = handle
        self.principals[resource_id] = {p.lower() for p in principals}
        self.children[resource_id] = []
        for index in range(children):
            self.add_file(f"{resource_id}-file{index}", parent=resource_id, principals=principals)
        return handle

    def add_file(self, resource_id: str, parent: str, principals=(), name: str = "", mime_type: str = "application/pdf") -> RemoteHandle:
        handle = RemoteHandle(resource_id, name or f"{resource_id}.pdf", ResourceKind.FILE, mime_type)
        self.handles[resource_id] = handle
        self.principals[resource_id] = {p.lower() for p in principals}
        self.children.setdefault(parent, []).append(handle)
        return handle

    def has_access(self, resource_id: str, principal: str) -> bool:
        return principal.lower() in self.principals.get(resource_id, set())

    def get_container(self, container_id: str) -> RemoteHandle:
        self.lookups.append(container_id)
        if container_id in self.container_errors:
            raise self.container_errors[container_id]
        handle = self.handles.get(container_id)
        if handle is None or handle.kind != ResourceKind.FOLDER:
            raise RemoteOperationError(f"Folder not found: {container_id}", status_code=404)
        return handle

    def list_children(self, container: RemoteHandle) -> list[RemoteHandle]:
        return list(self.children.get(container.resource_id, []))

    def get_authorized_principals(self, handle: RemoteHandle) -> set[str]:
        if handle.resource_id in self.principal_errors:
            raise self.principal_errors[handle.resource_id]
        return set(self.principals.get(handle.resource_id, set()))

    def grant(self, handle: RemoteHandle, principal: str, level: GrantLevel) -> None:
        if self.rate_limit_grants > 0:
            self.rate_limit_grants -= 1
            raise RateLimitError("User rate limit exceeded")
        if handle.resource_id in self.grant_errors:
            raise self.grant_errors[handle.resource_id]
        self.grants.append((handle.resource_id, principal, level))
        self.principals.setdefault(handle.resource_id, set()).add(principal.lower())

    def list_files(self, container: RemoteHandle, mime_type: Optional[str] = None) -> list[RemoteHandle]:
        return [
            h for h in self.children.get(container.resource_id, [])
            if h.kind == ResourceKind.FILE
            and h.resource_id not in self.trashed
            and (mime_type is None or h.mime_type == mime_type)
        ]

    def copy_file(self, file: RemoteHandle, destination: RemoteHandle) -> RemoteHandle:
        copy_id = f"{file.resource_id}-copy"
        self.copies.append((file.resource_id, destination.resource_id))
        return self.add_file(copy_id, parent=destination.resource_id, name=file.name, mime_type=file.mime_type)

    def trash(self, handle: RemoteHandle) -> None:
        self.trashed.append(handle.resource_id)

    def create_folder(self, parent: RemoteHandle, name: str) -> RemoteHandle:
        if name in self.create_errors:
            raise self.create_errors[name]
        resource_id = f"{parent.resource_id}-sub{len(self.created)}"
        handle = RemoteHandle(
            resource_id,
            name,
            ResourceKind.FOLDER,
            web_url=f"https://drive.google.com/drive/folders/{resource_id}",
        )
        self.handles[resource_id] = handle
        self.principals[resource_id] = set()
        self.children[resource_id] = []
        self.children.setdefault(parent.resource_id, []).append(handle)
        self.created.append((parent.resource_id, name))
        return handle


class RecordingSchedulerBridge(SchedulerBridge):
    """Keeps at most one pending delay per job, like the real bridge."""

    def __init__(self):
        self.scheduled: list[tuple[str, float]] = []
        self.cancelled: list[str] = []
        self._pending: dict[str, float] = {}

    def schedule(self, job_name: str, delay_seconds: float) -> None:
        self.scheduled.append((job_name, delay_seconds))
        self._pending[job_name] = delay_seconds

    def cancel_all(self, job_name: str) -> int:
        self.cancelled.append(job_name)
        return 1 if self._pending.pop(job_name, None) is not None else 0

    def pending(self, job_name: str) -> list[Trigger]:
        if job_name not in self._pending:
            return []
        return [Trigger("t-1", job_name, self._pending[job_name], "2026-01-01T00:00:00")]


# =============================================================================
# Fixtures
# =============================================================================


def build_roster(count: int, header: Optional[list] = None) -> list[list]:
    """Header plus `count` data rows (rows 2..count+1), none shared yet."""
    rows = [list(header or ROSTER_HEADER)]
    for index in range(2, count + 2):
        rows.append([email(index), f"Student {index}", folder_url(index), "", ""])
    return rows


@pytest.fixture
def state_db(tmp_path) -> StateDatabase:
    return StateDatabase(tmp_path / "state.sqlite")


@pytest.fixture
def checkpoints(state_db) -> CheckpointStore:
    return CheckpointStore(state_db)


@pytest.fixture
def scheduler() -> RecordingSchedulerBridge:
    return RecordingSchedulerBridge()


@pytest.fixture
def object_store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def make_config():
    """GrantJobConfig with zero pauses; keyword arguments override fields."""

    def _make(**overrides) -> GrantJobConfig:
        values = dict(
            job_name="share_planning_folders",
            spreadsheet_id="sheet-1",
            batch_size=50,
            flush_threshold=0,
            container_pause_seconds=0,
            child_pause_seconds=0,
            grant_retry_pause_seconds=0,
        )
        values.update(overrides)
        return GrantJobConfig(**values).validate()

    return _make


@pytest.fixture
def roster_env(object_store):
    """Factory: a roster of `count` rows whose folders exist in object_store."""

    def _make(count: int, children: int = 1) -> MemoryTabularStore:
        for index in range(2, count + 2):
            object_store.add_folder(folder_id(index), children=children)
        return MemoryTabularStore(build_roster(count))

    return _make

