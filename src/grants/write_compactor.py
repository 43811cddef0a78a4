"""
Write Compactor.

Buffers status-cell writes and flushes them with as few round-trips to the
tabular store as possible: writes are grouped by column, sorted by row, and
each maximal run of consecutive rows becomes one range write. A run of one
row becomes a single-cell write.

The batch executor flushes before persisting its checkpoint, never after.
"""

import logging
from itertools import groupby
from typing import Any, Optional

from .entities import PendingWrite


logger = logging.getLogger(__name__)


def compact_runs(writes: list[PendingWrite]) -> list[tuple[int, int, list]]:
    """
    Partition writes into (column, start_row, values) runs.

    Later writes to the same cell win. Runs are ordered by column, then row.
    """
    latest: dict[tuple[int, int], Any] = {}
    for write in writes:
        latest[(write.column_index, write.row_number)] = write.value

    runs = []
    for column, cells in groupby(sorted(latest.items()), key=lambda item: item[0][0]):
        start_row: Optional[int] = None
        previous_row: Optional[int] = None
        values: list = []
        for (_, row), value in cells:
            if previous_row is not None and row == previous_row + 1:
                values.append(value)
            else:
                if start_row is not None:
                    runs.append((column, start_row, values))
                start_row = row
                values = [value]
            previous_row = row
        if start_row is not None:
            runs.append((column, start_row, values))

    return runs


class WriteCompactor:
    """
    Pending write buffer in front of a tabular store.

    When `flush_threshold` writes are pending, `enqueue` flushes
    automatically. A threshold of 0 disables auto-flush.
    """

    def __init__(self, table, flush_threshold: int = 0):
        """
        Args:
            table: TabularStore receiving the writes
            flush_threshold: Pending-write count that triggers a flush
        """
        self.table = table
        self.flush_threshold = flush_threshold
        self._pending: list[PendingWrite] = []

    @property
    def pending(self) -> list[PendingWrite]:
        """Writes not yet flushed."""
        return list(self._pending)

    def enqueue(self, row_number: int, column_index: int, value: Any) -> None:
        """Buffer a single-cell write."""
        self._pending.append(PendingWrite(row_number, column_index, value))
        if self.flush_threshold and len(self._pending) >= self.flush_threshold:
            self.flush()

    def flush(self) -> int:
        """
        Write all pending values.

        Pending writes are only dropped once every run has been written; if a
        write raises, the buffer is kept so the caller can decide what to do.

        Returns:
            Number of underlying write calls issued
        """
        if not self._pending:
            return 0

        runs = compact_runs(self._pending)
        for column, start_row, values in runs:
            if len(values) == 1:
                self.table.write_cell(start_row, column, values[0])
            else:
                self.table.write_range(start_row, column, [[value] for value in values])

        logger.debug(
            f"Flushed {len(self._pending)} pending writes in {len(runs)} calls"
        )
        self._pending = []
        return len(runs)
