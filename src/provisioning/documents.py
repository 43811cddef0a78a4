"""
Roster document distribution.

Moves per-student documents from a source folder into each roster row's
folder. A document belongs to the roster identifier found after the first
underscore of its file name (e.g. "planning_104233.pdf" -> "104233").

A move is copy-then-trash; the row's status column is then set to the
completion sentinel so the next run skips it.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from src.adapters.base import ObjectStore, RESOURCE_ID_PATTERN, TabularStore
from src.grants.entities import RemoteHandle, is_terminal_value
from src.grants.errors import ConfigurationError, ProvisioningError, RateLimitError, RemoteOperationError
from src.grants.write_compactor import WriteCompactor
from src.infra.config import DocumentDistributionConfig


logger = logging.getLogger(__name__)

FILE_ID_PATTERN = re.compile(r"_(\w+)")


def document_key(file_name: str) -> Optional[str]:
    """Roster identifier encoded in a file name, or None."""
    match = FILE_ID_PATTERN.search(file_name)
    return match.group(1).strip() if match else None


@dataclass
class DistributionSummary:
    """Counters for one distribution run."""

    documents_found: int = 0
    moved: int = 0
    skipped: int = 0
    missing_document: int = 0
    errors: list = field(default_factory=list)
    rate_limited: bool = False

    def to_dict(self) -> dict:
        return {
            "documents_found": self.documents_found,
            "moved": self.moved,
            "skipped": self.skipped,
            "missing_document": self.missing_document,
            "errors": list(self.errors),
            "rate_limited": self.rate_limited,
        }


def build_document_map(files: list[RemoteHandle]) -> dict[str, RemoteHandle]:
    """Map roster identifier -> file. Later files win on duplicate identifiers."""
    documents = {}
    for handle in files:
        key = document_key(handle.name)
        if key:
            documents[key] = handle
    return documents


def distribute_documents(
    config: DocumentDistributionConfig,
    table: TabularStore,
    object_store: ObjectStore,
) -> DistributionSummary:
    """
    Move matching documents from the source folder into roster folders.

    Rows without an identifier or folder link, already marked, or without
    a matching document are skipped. Per-row remote errors are recorded and
    the run continues; a rate limit stops the run after flushing the rows
    moved so far. Rows moved but left unmarked by a failed flush are
    recorded in `errors`.

    Raises:
        ConfigurationError: Folder or status column not found
    """
    folder_column = table.find_header_column(config.folder_headers)
    status_column = table.find_header_column(config.status_headers)
    if folder_column is None or status_column is None:
        raise ConfigurationError(
            f"Folder or moved-status column not found in header: {table.header_row()}"
        )

    summary = DistributionSummary()
    source = object_store.get_container(config.source_folder_id)
    documents = build_document_map(object_store.list_files(source, config.mime_type))
    summary.documents_found = len(documents)
    logger.info(f"Found {len(documents)} document(s) with roster identifiers in {source.name or source.resource_id}")

    last_row = table.last_row()
    if last_row < 2:
        return summary

    width = max(config.id_column, folder_column, status_column)
    rows = table.read_range(2, 1, last_row - 1, width)
    compactor = WriteCompactor(table, flush_threshold=config.flush_threshold)

    try:
        for offset, values in enumerate(rows):
            row_number = offset + 2
            roster_id = str(values[config.id_column - 1]).strip()
            folder_link = str(values[folder_column - 1]).strip()

            if not roster_id or not folder_link or is_terminal_value(values[status_column - 1], config.sentinel):
                summary.skipped += 1
                continue

            document = documents.get(roster_id)
            if document is None:
                logger.info(f"Row {row_number}: no document for {roster_id}")
                summary.missing_document += 1
                continue

            match = RESOURCE_ID_PATTERN.search(folder_link)
            if not match:
                logger.warning(f"Row {row_number}: invalid folder link for {roster_id}")
                summary.errors.append(f"Row {row_number}: invalid folder link")
                continue

            try:
                folder = object_store.get_container(match.group(0))
                object_store.copy_file(document, folder)
                object_store.trash(document)
            except RemoteOperationError as e:
                logger.error(f"Row {row_number}: could not move {document.name}: {e}")
                summary.errors.append(f"Row {row_number}: {e}")
                continue

            logger.info(f"Row {row_number}: moved {document.name}")
            compactor.enqueue(row_number, status_column, config.sentinel)
            summary.moved += 1
    except RateLimitError as e:
        logger.warning(f"Rate limited, stopping after {summary.moved} move(s): {e}")
        summary.rate_limited = True

    _flush_marks(compactor, summary)

    logger.info(f"Finished. Documents moved: {summary.moved}")
    return summary


def _flush_marks(compactor: WriteCompactor, summary: DistributionSummary) -> None:
    """Write buffered status marks; a failure leaves those rows unmarked."""
    try:
        compactor.flush()
    except ProvisioningError as e:
        if isinstance(e, RateLimitError):
            summary.rate_limited = True
        for write in compactor.pending:
            logger.error(f"Row {write.row_number}: document moved but row not marked: {e}")
            summary.errors.append(f"Row {write.row_number}: moved but not marked: {e}")
