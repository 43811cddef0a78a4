"""
Batch Executor.

Grants access for one bounded slice of roster rows per invocation:

1. Resolve the cursor from the checkpoint store, or scan for the first
   non-terminal row when the job has never checkpointed.
2. Read rows [cursor, min(last_row, cursor + batch_size - 1)].
3. Skip terminal rows and rows missing a principal or container.
4. Resolve every distinct container of the slice through a PermissionCache.
5. Grant what is missing, mark rows terminal through the WriteCompactor.
6. Flush, persist the checkpoint, and decide the continuation.

All per-invocation state lives in a BatchRun passed through the phases;
only CheckpointState crosses invocation boundaries.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from src.adapters.base import ObjectStore, TabularStore, extract_resource_id
from src.infra.config import GrantJobConfig

from .checkpoint import CheckpointStore
from .entities import (
    CheckpointState,
    ContainerPermissionSnapshot,
    ExecutorState,
    JobSummary,
    ResourceKind,
    StepResult,
    WorkItem,
    is_terminal_value,
)
from .errors import ConfigurationError, ProvisioningError, RateLimitError, RemoteOperationError
from .permission_cache import PermissionCache
from .scheduler_bridge import SchedulerBridge
from .write_compactor import WriteCompactor


logger = logging.getLogger(__name__)

FIRST_DATA_ROW = 2


@dataclass(frozen=True)
class ColumnLayout:
    """1-based columns discovered from the header row."""

    principal: int
    container: int
    status: int
    diagnostic: Optional[int] = None

    @property
    def width(self) -> int:
        return max(c for c in (self.principal, self.container, self.status, self.diagnostic) if c)


@dataclass
class BatchRun:
    """Mutable state of one invocation."""

    job_name: str
    columns: ColumnLayout
    cursor_row: int
    end_row: int
    last_row: int
    summary: JobSummary
    started_at: float
    started_continuous: bool = False
    consecutive_quota_errors: int = 0
    quota_paused: bool = False
    pause_row: Optional[int] = None
    stopped_at: Optional[int] = None
    deferred_rows: list = field(default_factory=list)

    def next_cursor(self) -> int:
        """First row whose status is still unknown after this slice."""
        if self.quota_paused and self.pause_row is not None:
            cursor = self.pause_row
        elif self.stopped_at is not None:
            cursor = self.stopped_at
        else:
            cursor = self.end_row + 1
        if self.deferred_rows:
            cursor = min(cursor, self.deferred_rows[0])
        return cursor


class BatchExecutor:
    """
    Quota-aware, checkpointed access-grant processor for one job.

    Usage:
        executor = BatchExecutor(config, table, object_store, checkpoints, scheduler)
        result = executor.step()
    """

    def __init__(
        self,
        config: GrantJobConfig,
        table: TabularStore,
        object_store: ObjectStore,
        checkpoints: CheckpointStore,
        scheduler: SchedulerBridge,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            config: Job configuration
            table: Roster table
            object_store: Store holding the containers to share
            checkpoints: Checkpoint store
            scheduler: Re-invocation channel
            sleep: Injectable sleep function
            clock: Injectable monotonic clock for the time budget
        """
        self.config = config
        self.table = table
        self.object_store = object_store
        self.checkpoints = checkpoints
        self.scheduler = scheduler
        self._sleep = sleep
        self._clock = clock

        # Grant level per resource kind, resolved once
        self._levels = {
            kind: object_store.resolve_level(kind, config.grant_level)
            for kind in ResourceKind
        }

    @property
    def job_name(self) -> str:
        return self.config.job_name

    # =========================================================================
    # Step
    # =========================================================================

    def step(self, cache: Optional[PermissionCache] = None) -> StepResult:
        """
        Run one invocation.

        Args:
            cache: Pre-populated permission cache (a fresh one is created
                otherwise)

        Returns:
            StepResult describing the state the invocation ended in
        """
        summary = JobSummary(error_preview_limit=self.config.error_preview_limit)
        started_at = self._clock()
        started_continuous = self.checkpoints.is_continuous(self.job_name)
        logger.info(f"[{self.job_name}] Invocation started")

        try:
            columns = self.discover_columns()
            last_row = self.table.last_row()
            checkpoint = self.checkpoints.load(self.job_name)
            if checkpoint is not None:
                cursor_row = checkpoint.cursor_row
            else:
                cursor_row = self._scan_first_open_row(columns, last_row)
                logger.info(f"[{self.job_name}] No checkpoint, starting at row {cursor_row}")
        except ConfigurationError as e:
            return self._abort(summary, e)
        except RateLimitError as e:
            logger.warning(f"[{self.job_name}] Rate limited while reading the roster: {e}")
            summary.quota_pauses += 1
            return self._pause(summary, cursor_row=None, started_continuous=started_continuous)

        if cursor_row > last_row:
            return self._complete(summary, columns, last_row)

        run = BatchRun(
            job_name=self.job_name,
            columns=columns,
            cursor_row=cursor_row,
            end_row=min(last_row, cursor_row + self.config.batch_size - 1),
            last_row=last_row,
            summary=summary,
            started_at=started_at,
            started_continuous=started_continuous,
        )
        logger.info(
            f"[{self.job_name}] Processing rows {run.cursor_row}-{run.end_row} of {last_row}"
        )

        compactor = WriteCompactor(self.table, flush_threshold=self.config.flush_threshold)
        cache = cache or PermissionCache(
            self.object_store,
            container_pause_seconds=self.config.container_pause_seconds,
            child_pause_seconds=self.config.child_pause_seconds,
            sleep=self._sleep,
        )

        try:
            items = self._build_slice(run, compactor)
            snapshots = cache.resolve_batch(item.container_id for item in items)
            self._process_items(run, items, snapshots, compactor)
            compactor.flush()
        except RateLimitError as e:
            # Roster writes hit the quota; in-memory marks are lost and the
            # rows are reprocessed next time
            logger.warning(f"[{self.job_name}] Rate limited while writing the roster: {e}")
            summary.quota_pauses += 1
            return self._pause(summary, cursor_row=cursor_row, started_continuous=started_continuous)

        return self._finish(run)

    # =========================================================================
    # Phases
    # =========================================================================

    def discover_columns(self) -> ColumnLayout:
        """
        Locate the roster columns by header.

        Raises:
            ConfigurationError: If the principal, container or status column
                is missing
        """
        principal = self.table.find_header_column(self.config.principal_headers)
        container = self.table.find_header_column(self.config.container_headers)
        status = self.table.find_header_column(self.config.status_headers)
        diagnostic = (
            self.table.find_header_column(self.config.diagnostic_headers)
            if self.config.diagnostic_headers else None
        )

        missing = [
            name for name, column in (
                ("principal", principal),
                ("container", container),
                ("status", status),
            ) if column is None
        ]
        if missing:
            raise ConfigurationError(
                f"Required column(s) not found in header: {', '.join(missing)} "
                f"(header: {self.table.header_row()})"
            )

        return ColumnLayout(
            principal=principal,
            container=container,
            status=status,
            diagnostic=diagnostic,
        )

    def _scan_first_open_row(self, columns: ColumnLayout, last_row: int) -> int:
        """First data row whose status is not terminal, or last_row + 1."""
        if last_row < FIRST_DATA_ROW:
            return FIRST_DATA_ROW
        statuses = self.table.read_range(FIRST_DATA_ROW, columns.status, last_row - 1, 1)
        for offset, row in enumerate(statuses):
            if not is_terminal_value(row[0] if row else "", self.config.sentinel):
                return FIRST_DATA_ROW + offset
        return last_row + 1

    def _build_slice(self, run: BatchRun, compactor: WriteCompactor) -> list[WorkItem]:
        """Read the slice and turn eligible rows into work items."""
        columns = run.columns
        grid = self.table.read_range(
            run.cursor_row, 1, run.end_row - run.cursor_row + 1, columns.width
        )

        items = []
        for offset, values in enumerate(grid):
            row_number = run.cursor_row + offset

            def cell(column: int) -> str:
                value = values[column - 1] if column - 1 < len(values) else ""
                return "" if value is None else str(value).strip()

            if is_terminal_value(cell(columns.status), self.config.sentinel):
                run.summary.skipped += 1
                continue

            principal = cell(columns.principal)
            container_id = extract_resource_id(cell(columns.container))
            if not principal or not container_id:
                reason = "missing principal" if not principal else "missing container"
                logger.info(f"[{self.job_name}] Row {row_number}: skipped ({reason})")
                run.summary.skipped += 1
                self._note(compactor, run, row_number, f"Skipped: {reason}")
                continue

            items.append(WorkItem(
                row_number=row_number,
                principal=principal,
                container_id=container_id,
            ))

        return items

    def _process_items(
        self,
        run: BatchRun,
        items: list[WorkItem],
        snapshots: dict[str, ContainerPermissionSnapshot],
        compactor: WriteCompactor,
    ) -> None:
        """Grant and mark items in row order until the slice, quota or time runs out."""
        for index, item in enumerate(items):
            if index > 0 and self._clock() - run.started_at >= self.config.time_budget_seconds:
                logger.warning(
                    f"[{self.job_name}] Time budget of {self.config.time_budget_seconds}s "
                    f"reached, stopping at row {item.row_number}"
                )
                run.stopped_at = item.row_number
                return

            snapshot = snapshots[item.container_id]
            if snapshot.resolution_failed:
                if snapshot.rate_limited:
                    run.summary.deferred += 1
                    run.deferred_rows.append(item.row_number)
                    logger.info(
                        f"[{self.job_name}] Row {item.row_number}: deferred, "
                        f"container {item.container_id} not resolved"
                    )
                else:
                    self._record_error(run, compactor, item.row_number, snapshot.error or "Container not resolved")
                continue

            if self._grant_item(run, item, snapshot, compactor):
                self._mark_done(run, compactor, item.row_number)
            elif run.quota_paused:
                return

    def _grant_item(
        self,
        run: BatchRun,
        item: WorkItem,
        snapshot: ContainerPermissionSnapshot,
        compactor: WriteCompactor,
    ) -> bool:
        """
        Grant the principal every target it is missing.

        Returns:
            True if the principal now has access to all targets
        """
        targets = snapshot.missing_targets(item.principal)
        if not targets:
            run.summary.already_had_access += 1
            logger.debug(f"[{self.job_name}] Row {item.row_number}: {item.principal} already has access")
            return True

        for handle in targets:
            level = self._levels.get(handle.kind, self.config.grant_level)
            while True:
                try:
                    self.object_store.grant(handle, item.principal, level)
                except RateLimitError as e:
                    run.consecutive_quota_errors += 1
                    logger.warning(
                        f"[{self.job_name}] Row {item.row_number}: rate limited "
                        f"({run.consecutive_quota_errors}/{self.config.quota_error_threshold}): {e}"
                    )
                    if run.consecutive_quota_errors >= self.config.quota_error_threshold:
                        run.quota_paused = True
                        run.pause_row = item.row_number
                        run.summary.quota_pauses += 1
                        return False
                    self._sleep(self.config.grant_retry_pause_seconds)
                    continue
                except RemoteOperationError as e:
                    target = handle.name or handle.resource_id
                    self._record_error(run, compactor, item.row_number, f"Grant on {target} failed: {e}")
                    return False

                run.consecutive_quota_errors = 0
                run.summary.grants_issued += 1
                snapshot.record_grant(handle, item.principal)
                break

        logger.info(
            f"[{self.job_name}] Row {item.row_number}: granted {item.principal} "
            f"access to {len(targets)} item(s)"
        )
        return True

    def _mark_done(self, run: BatchRun, compactor: WriteCompactor, row_number: int) -> None:
        run.summary.success += 1
        compactor.enqueue(row_number, run.columns.status, self.config.sentinel)
        self._note(compactor, run, row_number, "")

    def _note(self, compactor: WriteCompactor, run: BatchRun, row_number: int, text: str) -> None:
        """Write the diagnostic column, when the roster has one."""
        if run.columns.diagnostic is not None:
            compactor.enqueue(row_number, run.columns.diagnostic, text)

    def _record_error(
        self,
        run: BatchRun,
        compactor: WriteCompactor,
        row_number: int,
        message: str,
    ) -> None:
        run.summary.add_error(row_number, message)
        logger.error(f"[{self.job_name}] Row {row_number}: {message}")
        self._note(compactor, run, row_number, message)

    # =========================================================================
    # Outcomes
    # =========================================================================

    def _finish(self, run: BatchRun) -> StepResult:
        """Persist the cursor and pick the continuation."""
        summary = run.summary
        next_cursor = run.next_cursor()

        if run.deferred_rows and not run.quota_paused:
            run.quota_paused = True
            summary.quota_pauses += 1

        if not run.quota_paused and next_cursor > run.last_row:
            return self._complete(summary, run.columns, run.last_row)

        continuous = self.checkpoints.is_continuous(self.job_name)
        self.checkpoints.save(self.job_name, CheckpointState(next_cursor, continuous))
        logger.info(f"[{self.job_name}] Checkpoint saved at row {next_cursor}")
        logger.info(f"[{self.job_name}] {summary.format()}")

        if run.quota_paused:
            return self._pause(
                summary,
                cursor_row=next_cursor,
                started_continuous=run.started_continuous,
                persisted=True,
            )

        if self._stop_requested(run.started_continuous):
            logger.info(f"[{self.job_name}] Stopped during this invocation, not rescheduling")
        elif continuous or run.stopped_at is not None:
            delay = self.config.continue_delay_seconds
            self.scheduler.schedule(self.job_name, delay)
            return StepResult(
                job_name=self.job_name,
                state=ExecutorState.RUNNING,
                summary=summary,
                cursor_row=next_cursor,
                next_delay_seconds=delay,
            )

        return StepResult(
            job_name=self.job_name,
            state=ExecutorState.IDLE,
            summary=summary,
            cursor_row=next_cursor,
        )

    def _pause(
        self,
        summary: JobSummary,
        cursor_row: Optional[int],
        started_continuous: bool,
        persisted: bool = False,
    ) -> StepResult:
        """
        Enter QUOTA_PAUSED and schedule re-entry after the cooldown.

        No re-entry is scheduled when the job was stopped while this
        invocation ran.
        """
        if not persisted:
            existing = self.checkpoints.load(self.job_name)
            if existing is not None:
                cursor_row = existing.cursor_row
            elif cursor_row is not None:
                self.checkpoints.save(
                    self.job_name,
                    CheckpointState(cursor_row, self.checkpoints.is_continuous(self.job_name)),
                )

        delay = self.config.quota_cooldown_seconds
        if self._stop_requested(started_continuous):
            delay = None
            logger.warning(f"[{self.job_name}] Quota pause at row {cursor_row}, job stopped, not rescheduling")
        else:
            self.scheduler.schedule(self.job_name, delay)
            logger.warning(
                f"[{self.job_name}] Quota pause, resuming at row {cursor_row} in {delay}s"
            )
        return StepResult(
            job_name=self.job_name,
            state=ExecutorState.QUOTA_PAUSED,
            summary=summary,
            cursor_row=cursor_row,
            next_delay_seconds=delay,
        )

    def _stop_requested(self, started_continuous: bool) -> bool:
        """True if continuous mode was switched off since the invocation started."""
        return started_continuous and not self.checkpoints.is_continuous(self.job_name)

    def _complete(self, summary: JobSummary, columns: ColumnLayout, last_row: int) -> StepResult:
        """Clear the checkpoint and deregister pending re-invocations."""
        self.checkpoints.clear(self.job_name)
        self.scheduler.cancel_all(self.job_name)

        terminal_rows = None
        if last_row >= FIRST_DATA_ROW:
            try:
                statuses = self.table.read_range(FIRST_DATA_ROW, columns.status, last_row - 1, 1)
            except ProvisioningError as e:
                logger.warning(f"[{self.job_name}] Could not count terminal rows: {e}")
            else:
                terminal_rows = sum(
                    1 for row in statuses
                    if is_terminal_value(row[0] if row else "", self.config.sentinel)
                )

        logger.info(
            f"[{self.job_name}] Completed. {summary.format()}"
            + (f"\nTerminal rows: {terminal_rows}" if terminal_rows is not None else "")
        )
        return StepResult(
            job_name=self.job_name,
            state=ExecutorState.COMPLETED,
            summary=summary,
            terminal_rows=terminal_rows,
        )

    def _abort(self, summary: JobSummary, error: ConfigurationError) -> StepResult:
        """Configuration failure: nothing mutated, chain stopped, checkpoint kept."""
        logger.error(f"[{self.job_name}] Aborted: {error}")
        self.scheduler.cancel_all(self.job_name)
        return StepResult(
            job_name=self.job_name,
            state=ExecutorState.ERROR_ABORT,
            summary=summary,
            error=str(error),
        )
