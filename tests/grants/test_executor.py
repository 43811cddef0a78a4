"""
Batch Executor behaviour tests.

Each test drives BatchExecutor.step() against in-memory stores and checks
rows marked, remote calls issued, the persisted cursor and the continuation.
"""

from unittest.mock import MagicMock

import pytest

from src.grants.entities import (
    CheckpointState,
    ContainerPermissionSnapshot,
    ExecutorState,
    GrantLevel,
    RemoteHandle,
    ResourceKind,
)
from src.grants.errors import RateLimitError, RemoteOperationError
from src.grants.executor import BatchExecutor
from src.grants.permission_cache import PermissionCache

from .conftest import (
    EMAIL_COL,
    FOLDER_COL,
    NOTES_COL,
    STATUS_COL,
    MemoryTabularStore,
    build_roster,
    email,
    folder_id,
)


JOB = "share_planning_folders"


def written_cells(table: MemoryTabularStore) -> dict:
    """(row, column) -> value for every cell written through the adapter."""
    cells = {}
    for call in table.calls:
        if call[0] == "write_cell":
            _, row, column, value = call
            cells[(row, column)] = value
        else:
            _, row, column, grid = call
            for r, values in enumerate(grid):
                for c, value in enumerate(values):
                    cells[(row + r, column + c)] = value
    return cells


def terminal_rows(table: MemoryTabularStore) -> set:
    return {
        row for row in range(2, table.last_row() + 1)
        if str(table.cell(row, STATUS_COL)).strip().lower() == "yes"
    }


def granted_containers(object_store) -> set:
    return {resource_id for resource_id, _, _ in object_store.grants}


@pytest.fixture
def make_executor(make_config, object_store, checkpoints, scheduler):
    def _make(table, sleep=None, clock=None, **overrides) -> BatchExecutor:
        kwargs = {"clock": clock} if clock is not None else {}
        return BatchExecutor(
            make_config(**overrides),
            table,
            object_store,
            checkpoints,
            scheduler,
            sleep=sleep or (lambda seconds: None),
            **kwargs,
        )

    return _make


class TestSlice:
    """Slicing, marking and checkpointing of one invocation."""

    def test_first_invocation_scans_from_row_2(self, roster_env, make_executor, checkpoints, scheduler):
        table = roster_env(8)
        result = make_executor(table, batch_size=5).step()

        assert result.state == ExecutorState.IDLE
        assert result.cursor_row == 7
        assert terminal_rows(table) == {2, 3, 4, 5, 6}
        assert checkpoints.load(JOB) == CheckpointState(cursor_row=7)
        assert scheduler.scheduled == []

    def test_scan_skips_leading_terminal_rows(self, roster_env, make_executor, object_store):
        table = roster_env(6)
        table.rows[1][STATUS_COL - 1] = "yes"
        table.rows[2][STATUS_COL - 1] = " YES "

        result = make_executor(table, batch_size=2).step()

        assert result.cursor_row == 6
        assert terminal_rows(table) == {2, 3, 4, 5}
        assert granted_containers(object_store) >= {folder_id(4), folder_id(5)}
        assert folder_id(2) not in granted_containers(object_store)

    def test_grants_container_and_children(self, roster_env, make_executor, object_store):
        table = roster_env(1, children=2)
        make_executor(table).step()

        assert sorted(object_store.grants) == sorted([
            (folder_id(2), email(2), GrantLevel.VIEW),
            (f"{folder_id(2)}-file0", email(2), GrantLevel.VIEW),
            (f"{folder_id(2)}-file1", email(2), GrantLevel.VIEW),
        ])

    def test_status_written_in_compacted_runs(self, roster_env, make_executor):
        table = roster_env(5)
        make_executor(table).step()

        status_calls = [c for c in table.calls if c[2] == STATUS_COL]
        assert status_calls == [("write_range", 2, STATUS_COL, [["yes"]] * 5)]

    def test_bare_identifier_in_container_cell(self, object_store, make_executor):
        rows = build_roster(1)
        rows[1][FOLDER_COL - 1] = f"  {folder_id(2)}  "
        object_store.add_folder(folder_id(2))
        table = MemoryTabularStore(rows)

        make_executor(table).step()

        assert terminal_rows(table) == {2}


class TestIdempotence:
    """Rows already terminal are never granted again."""

    def test_terminal_row_gets_no_grant(self, roster_env, make_executor, object_store):
        table = roster_env(3)
        table.rows[2][STATUS_COL - 1] = "yes"
        calls_before = len(table.calls)

        result = make_executor(table).step()

        assert folder_id(3) not in granted_containers(object_store)
        assert result.summary.skipped == 1
        assert (3, STATUS_COL) not in written_cells(table)
        assert len(table.calls) > calls_before

    def test_rerun_after_completion_issues_no_grants(self, roster_env, make_executor, object_store):
        table = roster_env(3)
        executor = make_executor(table)
        executor.step()
        grants_after_first = list(object_store.grants)

        result = executor.step()

        assert result.state == ExecutorState.COMPLETED
        assert object_store.grants == grants_after_first

    def test_rerun_from_stale_checkpoint_issues_no_grants(self, roster_env, make_executor, object_store, checkpoints):
        table = roster_env(4)
        for row in (2, 3, 4, 5):
            table.rows[row - 1][STATUS_COL - 1] = "yes"
        checkpoints.save(JOB, CheckpointState(cursor_row=2))

        make_executor(table).step()

        assert object_store.grants == []


class TestMonotonicity:
    """Terminal rows after a run are a superset of those before."""

    def test_never_unmarks(self, roster_env, make_executor, object_store):
        table = roster_env(6)
        for row in (3, 6):
            table.rows[row - 1][STATUS_COL - 1] = "Yes"
        object_store.grant_errors[folder_id(4)] = RemoteOperationError("denied", 403)
        before = terminal_rows(table)

        make_executor(table).step()

        assert before <= terminal_rows(table)
        assert 4 not in terminal_rows(table)


class TestAlreadyHasAccess:

    def test_preseeded_cache_means_zero_grants(self, roster_env, make_executor, object_store):
        table = roster_env(1)
        cache = PermissionCache(object_store, container_pause_seconds=0, child_pause_seconds=0)
        cache.seed(ContainerPermissionSnapshot(
            container_id=folder_id(2),
            handle=RemoteHandle(folder_id(2), kind=ResourceKind.FOLDER),
            authorized_principals={email(2)},
        ))

        result = make_executor(table).step(cache=cache)

        assert object_store.grants == []
        assert object_store.lookups == []
        assert terminal_rows(table) == {2}
        assert result.summary.already_had_access == 1
        assert result.summary.success == 1

    def test_existing_access_in_store_marks_terminal(self, object_store, make_executor):
        object_store.add_folder(folder_id(2), children=1, principals=[email(2).upper()])
        table = MemoryTabularStore(build_roster(1))

        make_executor(table).step()

        assert object_store.grants == []
        assert terminal_rows(table) == {2}


class TestQuotaPause:
    """Consecutive rate-limit failures on grants."""

    def test_threshold_pauses_at_current_row(self, roster_env, make_executor, object_store, checkpoints, scheduler):
        table = roster_env(6)
        object_store.grant_errors[folder_id(4)] = RateLimitError()
        sleep = MagicMock()

        result = make_executor(table, sleep=sleep, quota_error_threshold=3, grant_retry_pause_seconds=2.0).step()

        assert result.state == ExecutorState.QUOTA_PAUSED
        assert result.cursor_row == 4
        assert checkpoints.load(JOB).cursor_row == 4
        assert terminal_rows(table) == {2, 3}
        assert granted_containers(object_store).isdisjoint({folder_id(5), folder_id(6)})
        assert scheduler.scheduled == [(JOB, 900)]
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 2.0]
        assert result.summary.quota_pauses == 1
        assert result.summary.error_count == 0

    def test_success_resets_counter(self, roster_env, make_executor, object_store):
        table = roster_env(4)
        object_store.rate_limit_grants = 2

        result = make_executor(table, quota_error_threshold=3).step()

        assert result.state == ExecutorState.COMPLETED
        assert result.summary.quota_pauses == 0
        assert terminal_rows(table) == {2, 3, 4, 5}

    def test_pause_schedules_even_without_continuous_mode(self, roster_env, make_executor, object_store, checkpoints, scheduler):
        table = roster_env(2)
        object_store.rate_limit_grants = 10

        make_executor(table, quota_error_threshold=2, quota_cooldown_seconds=600).step()

        assert checkpoints.is_continuous(JOB) is False
        assert scheduler.scheduled == [(JOB, 600)]

    def test_pause_keeps_continuous_flag(self, roster_env, make_executor, object_store, checkpoints):
        table = roster_env(2)
        checkpoints.set_continuous(JOB, True)
        object_store.rate_limit_grants = 10

        make_executor(table, quota_error_threshold=2).step()

        assert checkpoints.load(JOB) == CheckpointState(cursor_row=2, continuous_mode=True)

    def test_stop_during_pause_does_not_reschedule(self, roster_env, make_executor, object_store, checkpoints, scheduler):
        table = roster_env(3)
        checkpoints.set_continuous(JOB, True)

        def stop_then_rate_limit(handle, principal, level):
            checkpoints.set_continuous(JOB, False)
            scheduler.cancel_all(JOB)
            raise RateLimitError()

        object_store.grant = stop_then_rate_limit

        result = make_executor(table, quota_error_threshold=2).step()

        assert result.state == ExecutorState.QUOTA_PAUSED
        assert result.next_delay_seconds is None
        assert scheduler.scheduled == []
        assert scheduler.pending(JOB) == []
        assert checkpoints.load(JOB) == CheckpointState(cursor_row=2, continuous_mode=False)

    def test_flush_rate_limit_does_not_advance(self, roster_env, make_executor, checkpoints, scheduler):
        table = roster_env(3)
        checkpoints.save(JOB, CheckpointState(cursor_row=2))
        table.write_error = RateLimitError()

        result = make_executor(table).step()

        assert result.state == ExecutorState.QUOTA_PAUSED
        assert checkpoints.load(JOB).cursor_row == 2
        assert scheduler.scheduled == [(JOB, 900)]


class TestDeferredContainers:

    def test_rate_limited_resolution_holds_cursor(self, roster_env, make_executor, object_store, checkpoints, scheduler):
        table = roster_env(5)
        object_store.container_errors[folder_id(4)] = RateLimitError()

        result = make_executor(table).step()

        assert result.state == ExecutorState.QUOTA_PAUSED
        assert terminal_rows(table) == {2, 3}
        assert result.summary.deferred == 3
        assert result.summary.error_count == 0
        assert checkpoints.load(JOB).cursor_row == 4
        assert scheduler.scheduled == [(JOB, 900)]


class TestSkipsAndErrors:

    def test_empty_principal_skipped_and_unwritten(self, roster_env, make_executor, object_store):
        table = roster_env(3)
        table.rows[2][EMAIL_COL - 1] = "   "
        lookups_expected = {folder_id(2), folder_id(4)}

        result = make_executor(table).step()

        assert result.summary.skipped == 1
        assert folder_id(3) not in granted_containers(object_store)
        assert set(object_store.lookups) == lookups_expected
        assert (3, STATUS_COL) not in written_cells(table)
        assert table.cell(3, STATUS_COL) == ""
        assert written_cells(table)[(3, NOTES_COL)] == "Skipped: missing principal"

    def test_empty_container_skipped(self, roster_env, make_executor):
        table = roster_env(2)
        table.rows[1][FOLDER_COL - 1] = ""

        result = make_executor(table).step()

        assert result.summary.skipped == 1
        assert terminal_rows(table) == {3}

    def test_remote_error_recorded_and_row_left_open(self, roster_env, make_executor, object_store):
        table = roster_env(3)
        object_store.grant_errors[folder_id(3)] = RemoteOperationError("HTTP 403: denied", 403)

        result = make_executor(table).step()

        assert result.state == ExecutorState.COMPLETED
        assert result.summary.error_count == 1
        assert "Row 3" in result.summary.format()
        assert terminal_rows(table) == {2, 4}
        assert "denied" in table.cell(3, NOTES_COL)

    def test_unresolvable_container_is_row_error(self, make_executor, object_store):
        object_store.add_folder(folder_id(3))
        table = MemoryTabularStore(build_roster(2))

        result = make_executor(table).step()

        assert result.summary.error_count == 1
        assert terminal_rows(table) == {3}

    def test_unreadable_container_permissions_still_granted(self, roster_env, make_executor, object_store):
        table = roster_env(2)
        object_store.principal_errors[folder_id(2)] = RemoteOperationError("HTTP 500: backend error", 500)

        result = make_executor(table).step()

        assert result.state == ExecutorState.COMPLETED
        assert result.summary.error_count == 0
        assert {folder_id(2), f"{folder_id(2)}-file0"} <= granted_containers(object_store)
        assert terminal_rows(table) == {2, 3}

    def test_error_preview_is_bounded(self, roster_env, make_executor, object_store):
        table = roster_env(5)
        for index in range(2, 7):
            object_store.grant_errors[folder_id(index)] = RemoteOperationError("denied")

        result = make_executor(table, error_preview_limit=2).step()

        assert result.summary.error_count == 5
        assert len(result.summary.errors) == 2
        assert "3 more" in result.summary.format()


class TestConfigurationAbort:

    def test_missing_container_column_aborts(self, object_store, make_executor, checkpoints, scheduler):
        rows = build_roster(3)
        rows[0][FOLDER_COL - 1] = "Notes"
        table = MemoryTabularStore(rows)
        checkpoints.save(JOB, CheckpointState(cursor_row=3))

        result = make_executor(table).step()

        assert result.state == ExecutorState.ERROR_ABORT
        assert "container" in result.error
        assert table.calls == []
        assert object_store.grants == []
        assert scheduler.cancelled == [JOB]
        assert checkpoints.load(JOB).cursor_row == 3

    def test_missing_principal_column_aborts(self, make_executor):
        rows = build_roster(1)
        rows[0][EMAIL_COL - 1] = "Contact"
        result = make_executor(MemoryTabularStore(rows)).step()

        assert result.state == ExecutorState.ERROR_ABORT
        assert "principal" in result.error


class TestContinuation:

    def test_continuous_mode_schedules_short_delay(self, roster_env, make_executor, checkpoints, scheduler):
        table = roster_env(8)
        checkpoints.set_continuous(JOB, True)

        result = make_executor(table, batch_size=5, continue_delay_seconds=60).step()

        assert result.state == ExecutorState.RUNNING
        assert result.next_delay_seconds == 60
        assert scheduler.scheduled == [(JOB, 60)]
        assert checkpoints.load(JOB) == CheckpointState(cursor_row=7, continuous_mode=True)

    def test_completion_clears_and_cancels(self, roster_env, make_executor, checkpoints, scheduler):
        table = roster_env(3)
        checkpoints.set_continuous(JOB, True)
        scheduler.schedule(JOB, 60)

        result = make_executor(table).step()

        assert result.state == ExecutorState.COMPLETED
        assert result.terminal_rows == 3
        assert checkpoints.load(JOB) is None
        assert checkpoints.is_continuous(JOB) is False
        assert scheduler.pending(JOB) == []
        assert scheduler.cancelled == [JOB]

    def test_time_budget_stops_early(self, roster_env, make_executor, checkpoints, scheduler):
        table = roster_env(5)
        clock = MagicMock(side_effect=[0.0, 500.0])

        result = make_executor(table, clock=clock, time_budget_seconds=300).step()

        assert result.state == ExecutorState.RUNNING
        assert terminal_rows(table) == {2}
        assert checkpoints.load(JOB).cursor_row == 3
        assert scheduler.scheduled == [(JOB, 60)]

    def test_stop_during_time_budget_run_does_not_reschedule(self, roster_env, make_executor, checkpoints, scheduler):
        table = roster_env(5)
        checkpoints.set_continuous(JOB, True)
        readings = iter([0.0, 500.0])

        def clock():
            reading = next(readings)
            if reading > 0:
                checkpoints.set_continuous(JOB, False)
                scheduler.cancel_all(JOB)
            return reading

        result = make_executor(table, clock=clock, time_budget_seconds=300).step()

        assert result.state == ExecutorState.IDLE
        assert checkpoints.load(JOB).cursor_row == 3
        assert scheduler.scheduled == []
        assert scheduler.pending(JOB) == []

    def test_completion_survives_rate_limited_recount(self, make_executor, object_store, checkpoints, scheduler):
        class RecountRateLimited(MemoryTabularStore):
            def read_range(self, row, column, num_rows, num_columns):
                if num_columns == 1 and self.calls:
                    raise RateLimitError()
                return super().read_range(row, column, num_rows, num_columns)

        for index in range(2, 5):
            object_store.add_folder(folder_id(index))
        table = RecountRateLimited(build_roster(3))
        checkpoints.set_continuous(JOB, True)

        result = make_executor(table).step()

        assert result.state == ExecutorState.COMPLETED
        assert result.terminal_rows is None
        assert result.summary.success == 3
        assert terminal_rows(table) == {2, 3, 4}
        assert checkpoints.load(JOB) is None
        assert scheduler.cancelled == [JOB]


class TestGrantLevels:

    def test_comment_falls_back_to_view_on_folders(self, roster_env, make_executor, object_store):
        table = roster_env(1, children=1)

        make_executor(table, grant_level=GrantLevel.COMMENT).step()

        levels = {resource_id: level for resource_id, _, level in object_store.grants}
        assert levels == {
            folder_id(2): GrantLevel.VIEW,
            f"{folder_id(2)}-file0": GrantLevel.COMMENT,
        }
