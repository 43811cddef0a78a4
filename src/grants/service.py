"""
Grant Job Service - entry point for running and controlling grant jobs.

Wires the state database, checkpoint store, scheduler bridge and the remote
store adapters together, and exposes the job operations used by the CLI and
the HTTP control plane.

Usage:
    service = GrantJobService.create(db_path, access_token)
    result = service.run_once("share_planning_folders")
"""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from src.adapters.base import ObjectStore, TabularStore
from src.adapters.google_drive import GoogleDriveStore
from src.adapters.google_http import GoogleApiClient
from src.adapters.google_sheets import GoogleSheetsTable
from src.infra.config import GrantJobConfig, list_configured_jobs, load_job_config

from .checkpoint import CheckpointStore
from .entities import StepResult
from .errors import ConfigurationError, JobNotFoundError
from .executor import BatchExecutor
from .persistence import StateDatabase
from .scheduler_bridge import SqliteSchedulerBridge


logger = logging.getLogger(__name__)


StoreFactory = Callable[[GrantJobConfig], tuple[TabularStore, ObjectStore]]


def google_store_factory(access_token: str) -> StoreFactory:
    """Build Sheets/Drive adapters for a job from one bearer token."""

    def factory(config: GrantJobConfig) -> tuple[TabularStore, ObjectStore]:
        if not config.spreadsheet_id:
            raise ConfigurationError(
                f"Spreadsheet not configured for job {config.job_name} (GRANT_SPREADSHEET_ID)"
            )
        client = GoogleApiClient(access_token)
        return (
            GoogleSheetsTable(client, config.spreadsheet_id, config.sheet_name),
            GoogleDriveStore(client),
        )

    return factory


class GrantJobService:
    """
    Runs grant job invocations and manages their continuous mode.

    Invocations of the same job are serialized within one process.
    """

    def __init__(
        self,
        database: StateDatabase,
        store_factory: StoreFactory,
        job_names: Optional[list[str]] = None,
        config_loader: Callable[[str], GrantJobConfig] = load_job_config,
        scheduler: Optional[SqliteSchedulerBridge] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Use GrantJobService.create() for convenient construction.
        """
        self.database = database
        self.checkpoints = CheckpointStore(database)
        self.scheduler = scheduler or SqliteSchedulerBridge(database)
        self.store_factory = store_factory
        self.job_names = list(job_names) if job_names is not None else list_configured_jobs()
        self.config_loader = config_loader
        self._sleep = sleep
        self._lock = threading.Lock()

    @classmethod
    def create(
        cls,
        db_path: str | Path,
        access_token: str,
        job_names: Optional[list[str]] = None,
    ) -> "GrantJobService":
        """
        Create a service backed by the Google adapters.

        Args:
            db_path: Path to SQLite state database
            access_token: OAuth bearer token for Sheets and Drive
            job_names: Accepted job names (default: GRANT_JOBS)
        """
        return cls(
            database=StateDatabase(db_path),
            store_factory=google_store_factory(access_token),
            job_names=job_names,
        )

    def _require_job(self, job_name: str) -> None:
        if job_name not in self.job_names:
            raise JobNotFoundError(job_name)

    def executor_for(self, job_name: str) -> BatchExecutor:
        """
        Build an executor for one job.

        Raises:
            JobNotFoundError: Unknown job
            ConfigurationError: Invalid job configuration
        """
        self._require_job(job_name)
        config = self.config_loader(job_name)
        table, object_store = self.store_factory(config)
        return BatchExecutor(
            config=config,
            table=table,
            object_store=object_store,
            checkpoints=self.checkpoints,
            scheduler=self.scheduler,
            sleep=self._sleep,
        )

    # =========================================================================
    # Job Operations
    # =========================================================================

    def run_once(self, job_name: str) -> StepResult:
        """Run one invocation (one slice) of a job."""
        executor = self.executor_for(job_name)
        with self._lock:
            result = executor.step()
        logger.info(f"Job {job_name} invocation ended in state {result.state.value}")
        return result

    def start(self, job_name: str) -> StepResult:
        """Enable continuous mode and run the first invocation."""
        self._require_job(job_name)
        self.checkpoints.set_continuous(job_name, True)
        logger.info(f"Continuous mode enabled for job {job_name}")
        return self.run_once(job_name)

    def stop(self, job_name: str) -> int:
        """
        Disable continuous mode and remove pending re-invocations.

        The cursor is kept and completed grants are not rolled back.

        Returns:
            Number of pending re-invocations removed
        """
        self._require_job(job_name)
        self.checkpoints.set_continuous(job_name, False)
        removed = self.scheduler.cancel_all(job_name)
        logger.info(f"Job {job_name} stopped ({removed} pending re-invocation(s) removed)")
        return removed

    def status(self, job_name: str) -> dict:
        """Checkpoint and scheduling state of a job."""
        self._require_job(job_name)
        checkpoint = self.checkpoints.load(job_name)
        return {
            "job_name": job_name,
            "cursor_row": checkpoint.cursor_row if checkpoint else None,
            "continuous": self.checkpoints.is_continuous(job_name),
            "next_run_at": self.scheduler.next_fire_at(job_name),
            "pending_triggers": len(self.scheduler.pending(job_name)),
        }
