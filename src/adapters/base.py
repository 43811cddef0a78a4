"""
Adapter contracts for the remote stores.

TabularStore: row-addressable table (a sheet). Rows and columns are 1-based;
row 1 is the header row.

ObjectStore: hierarchical container/file service with access-control
operations. Every call may raise RateLimitError (quota) or
RemoteOperationError (anything else).
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from src.grants.entities import GrantLevel, RemoteHandle, ResourceKind


# Remote resource identifiers are long URL-safe tokens
RESOURCE_ID_PATTERN = re.compile(r"[-\w]{25,}")


def extract_resource_id(value: Any) -> str:
    """
    Extract a resource identifier from a cell value.

    Cells may hold a bare identifier or a full sharing URL; the first run of
    25+ URL-safe characters wins, otherwise the trimmed text is returned.
    """
    text = "" if value is None else str(value).strip()
    match = RESOURCE_ID_PATTERN.search(text)
    return match.group(0) if match else text


def find_header_index(headers: Sequence[Any], candidates: Sequence[str]) -> Optional[int]:
    """
    Find the 1-based column of the first matching header.

    Case-insensitive exact match over all candidates first, then substring
    match. Returns None if nothing matches.
    """
    lower_headers = [("" if h is None else str(h)).strip().lower() for h in headers]

    for candidate in candidates:
        wanted = candidate.strip().lower()
        if wanted in lower_headers:
            return lower_headers.index(wanted) + 1

    for index, header in enumerate(lower_headers):
        if not header:
            continue
        for candidate in candidates:
            if candidate.strip().lower() in header:
                return index + 1

    return None


class TabularStore(ABC):
    """Read/write access to the rows of one table."""

    @abstractmethod
    def read_range(self, row: int, column: int, num_rows: int, num_columns: int) -> list[list]:
        """
        Read a rectangular block of cells.

        Returns:
            num_rows lists of num_columns values; missing cells are ""
        """
        ...

    @abstractmethod
    def write_cell(self, row: int, column: int, value: Any) -> None:
        """Write one cell."""
        ...

    @abstractmethod
    def write_range(self, row: int, column: int, grid: list[list]) -> None:
        """Write a rectangular block of cells starting at (row, column)."""
        ...

    @abstractmethod
    def last_row(self) -> int:
        """1-based index of the last row holding any value (0 for an empty table)."""
        ...

    @abstractmethod
    def last_column(self) -> int:
        """1-based index of the last column holding any value."""
        ...

    def header_row(self) -> list:
        """Read the header row."""
        width = self.last_column()
        if width < 1:
            return []
        return self.read_range(1, 1, 1, width)[0]

    def find_header_column(self, candidates: Sequence[str]) -> Optional[int]:
        """1-based column whose header matches one of the candidates, or None."""
        return find_header_index(self.header_row(), candidates)


class ObjectStore(ABC):
    """Hierarchical container/file service with access control."""

    # Grant levels each resource kind accepts
    SUPPORTED_LEVELS: dict = {
        ResourceKind.FOLDER: frozenset({GrantLevel.VIEW}),
        ResourceKind.FILE: frozenset({GrantLevel.VIEW, GrantLevel.COMMENT}),
    }

    def supported_levels(self, kind: ResourceKind) -> frozenset:
        """Grant levels a resource kind supports."""
        return self.SUPPORTED_LEVELS.get(kind, frozenset({GrantLevel.VIEW}))

    def resolve_level(self, kind: ResourceKind, requested: GrantLevel) -> GrantLevel:
        """The requested level if the kind supports it, otherwise VIEW."""
        if requested in self.supported_levels(kind):
            return requested
        return GrantLevel.VIEW

    @abstractmethod
    def get_container(self, container_id: str) -> RemoteHandle:
        """Resolve a container handle by identifier."""
        ...

    @abstractmethod
    def list_children(self, container: RemoteHandle) -> list[RemoteHandle]:
        """List the direct children of a container."""
        ...

    @abstractmethod
    def get_authorized_principals(self, handle: RemoteHandle) -> set[str]:
        """Lower-cased principals that already have access to a resource."""
        ...

    @abstractmethod
    def grant(self, handle: RemoteHandle, principal: str, level: GrantLevel) -> None:
        """Grant a principal access to a resource at the given level."""
        ...

    @abstractmethod
    def list_files(self, container: RemoteHandle, mime_type: Optional[str] = None) -> list[RemoteHandle]:
        """List files in a container, optionally filtered by MIME type."""
        ...

    @abstractmethod
    def copy_file(self, file: RemoteHandle, destination: RemoteHandle) -> RemoteHandle:
        """Copy a file into a destination container, keeping its name."""
        ...

    @abstractmethod
    def trash(self, handle: RemoteHandle) -> None:
        """Move a resource to the trash."""
        ...

    @abstractmethod
    def create_folder(self, parent: RemoteHandle, name: str) -> RemoteHandle:
        """Create a folder inside a parent container."""
        ...
