"""
Roster folder creation.

Creates one folder per roster row whose folder-link cell is empty, under a
configured parent folder, and writes the new folder's link back into that
cell. Folders are named "<name> - <identifier>"; a row with an identifier
but no name gets "Student - <identifier>".

A dry run plans the same actions without touching either store. Planned
links use the placeholder form WOULD_CREATE://<parent id>/<encoded name>.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from urllib.parse import quote

from src.adapters.base import ObjectStore, TabularStore
from src.grants.errors import ConfigurationError, ProvisioningError, RateLimitError, RemoteOperationError
from src.grants.write_compactor import WriteCompactor
from src.infra.config import FolderCreationConfig


logger = logging.getLogger(__name__)

UNSAFE_NAME_CHARACTERS = re.compile(r'[/\\?%*:|"<>]')
DEFAULT_FOLDER_NAME = "Student"
PLANNED_URL_PREFIX = "WOULD_CREATE://"
# Characters left unescaped in planned links, besides letters, digits and -_.~
PLANNED_URL_SAFE = "!*'()"


class FolderAction(str, Enum):
    """Outcome for one roster row."""

    CREATED = "CREATED"
    WOULD_CREATE = "WOULD_CREATE"
    SKIPPED = "SKIPPED"
    ERROR = "ERROR"


def sanitize_folder_name(name: str) -> str:
    """Replace path and wildcard characters with '-'."""
    return UNSAFE_NAME_CHARACTERS.sub("-", name).strip()


def folder_name(name: str, roster_id: str) -> Optional[str]:
    """Folder name for a row, or None if it has neither name nor identifier."""
    if not name and not roster_id:
        return None
    label = name or DEFAULT_FOLDER_NAME
    if roster_id:
        label = f"{label} - {roster_id}"
    return sanitize_folder_name(label)


def planned_url(parent_folder_id: str, name: str) -> str:
    return f"{PLANNED_URL_PREFIX}{parent_folder_id}/{quote(name, safe=PLANNED_URL_SAFE)}"


@dataclass
class FolderRowResult:
    """What happened (or would happen) to one row."""

    row_number: int
    action: FolderAction
    name: str = ""
    roster_id: str = ""
    folder_name: str = ""
    url: str = ""
    reason: str = ""

    def preview_line(self) -> str:
        line = f"Row {self.row_number}: {self.action.value} -> {self.folder_name or '(no name)'}"
        if self.roster_id:
            line += f" [{self.roster_id}]"
        if self.url:
            line += f" | {self.url}"
        if self.reason:
            line += f" ({self.reason})"
        return line


@dataclass
class FolderCreationSummary:
    """Counters for one folder creation run."""

    dry_run: bool = False
    created: int = 0
    would_create: int = 0
    skipped: int = 0
    errors: list = field(default_factory=list)
    rate_limited: bool = False
    results: list = field(default_factory=list)
    preview_limit: int = 10

    def record(self, result: FolderRowResult) -> None:
        self.results.append(result)
        if result.action == FolderAction.CREATED:
            self.created += 1
        elif result.action == FolderAction.WOULD_CREATE:
            self.would_create += 1
        elif result.action == FolderAction.SKIPPED:
            self.skipped += 1
        else:
            self.errors.append(f"Row {result.row_number}: {result.reason}")

    def to_dict(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "created": self.created,
            "would_create": self.would_create,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "rate_limited": self.rate_limited,
            "preview": [r.preview_line() for r in self.results[:self.preview_limit]],
        }


def create_row_folders(
    config: FolderCreationConfig,
    table: TabularStore,
    object_store: ObjectStore,
    dry_run: bool = False,
) -> FolderCreationSummary:
    """
    Create a folder for every roster row that has no folder link yet.

    Rows that already have a link, or have neither a name nor an identifier,
    are skipped. A failed create is recorded for its row and the run
    continues; a rate limit stops the run after writing the links of the
    folders created so far.

    Args:
        config: Folder creation configuration
        table: Roster table
        object_store: Store the folders are created in
        dry_run: Plan only; nothing is created or written

    Raises:
        ConfigurationError: Folder-link or name column not found, or the
            parent folder cannot be accessed
    """
    folder_column = table.find_header_column(config.folder_headers)
    if folder_column is None:
        raise ConfigurationError(f"Folder link column not found in header: {table.header_row()}")
    name_column = table.find_header_column(config.name_headers)
    if name_column is None:
        raise ConfigurationError(
            f"Name column not found, expected one of {config.name_headers}"
        )

    summary = FolderCreationSummary(dry_run=dry_run, preview_limit=config.preview_limit)
    last_row = table.last_row()
    if last_row < 2:
        logger.info("No roster rows found")
        return summary

    parent = None
    if not dry_run:
        try:
            parent = object_store.get_container(config.parent_folder_id)
        except RemoteOperationError as e:
            raise ConfigurationError(
                f"Parent folder {config.parent_folder_id} could not be found or accessed: {e}"
            ) from e

    width = max(config.id_column, name_column, folder_column)
    rows = table.read_range(2, 1, last_row - 1, width)
    compactor = WriteCompactor(table, flush_threshold=config.flush_threshold)

    try:
        for offset, values in enumerate(rows):
            row_number = offset + 2

            def cell(column: int) -> str:
                value = values[column - 1]
                return "" if value is None else str(value).strip()

            name = cell(name_column)
            roster_id = cell(config.id_column)

            if cell(folder_column):
                summary.record(FolderRowResult(
                    row_number, FolderAction.SKIPPED, name, roster_id, reason="Already has URL",
                ))
                continue

            planned_name = folder_name(name, roster_id)
            if planned_name is None:
                summary.record(FolderRowResult(
                    row_number, FolderAction.SKIPPED, reason="No identifying info",
                ))
                continue

            if dry_run:
                summary.record(FolderRowResult(
                    row_number,
                    FolderAction.WOULD_CREATE,
                    name,
                    roster_id,
                    planned_name,
                    url=planned_url(config.parent_folder_id, planned_name),
                ))
                continue

            try:
                created = object_store.create_folder(parent, planned_name)
            except RemoteOperationError as e:
                logger.error(f"Row {row_number}: could not create {planned_name}: {e}")
                summary.record(FolderRowResult(
                    row_number, FolderAction.ERROR, name, roster_id, planned_name, reason=str(e),
                ))
                continue

            url = created.web_url or created.resource_id
            compactor.enqueue(row_number, folder_column, url)
            logger.info(f"Row {row_number}: created {planned_name}")
            summary.record(FolderRowResult(
                row_number, FolderAction.CREATED, name, roster_id, planned_name, url=url,
            ))
    except RateLimitError as e:
        logger.warning(f"Rate limited, stopping after {summary.created} folder(s): {e}")
        summary.rate_limited = True

    if dry_run:
        logger.info(
            f"Dry run complete. Planned creates: {summary.would_create}, "
            f"Skipped: {summary.skipped}, Errors: {len(summary.errors)}"
        )
    else:
        _flush_links(compactor, summary)
        logger.info(f"Created {summary.created} folder(s)")
    return summary


def _flush_links(compactor: WriteCompactor, summary: FolderCreationSummary) -> None:
    """Write buffered folder links; a failure leaves those rows without a link."""
    try:
        compactor.flush()
    except ProvisioningError as e:
        if isinstance(e, RateLimitError):
            summary.rate_limited = True
        for write in compactor.pending:
            logger.error(f"Row {write.row_number}: folder {write.value} created but link not written: {e}")
            summary.errors.append(f"Row {write.row_number}: created {write.value} but link not written: {e}")
