"""
Scheduler Bridge.

Registers and removes time-delayed re-invocations of the batch executor.
The executor never waits in-process for a cooldown; it ends its invocation
and relies on the bridge to start a new one later, in a new process.

Guarantees:
- At most one pending re-invocation per job (schedule replaces)
- cancel_all removes every pending re-invocation of a job
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .entities import Trigger
from .persistence import StateDatabase


logger = logging.getLogger(__name__)


class SchedulerBridge(ABC):
    """Time-delayed re-invocation channel for one or more jobs."""

    @abstractmethod
    def schedule(self, job_name: str, delay_seconds: float) -> None:
        """Replace any pending re-invocation of the job with one after delay_seconds."""
        ...

    @abstractmethod
    def cancel_all(self, job_name: str) -> int:
        """Remove all pending re-invocations of the job. Returns how many were removed."""
        ...

    def pending(self, job_name: str) -> list[Trigger]:
        """Pending re-invocations of the job, soonest first."""
        return []


class SqliteSchedulerBridge(SchedulerBridge):
    """
    Scheduler bridge backed by the state database `triggers` table.

    Due triggers are picked up by TriggerRunner, which launches each job in
    a fresh process.
    """

    def __init__(
        self,
        database: StateDatabase,
        clock: Callable[[], float] = time.time,
    ):
        self.database = database
        self._clock = clock

    def schedule(self, job_name: str, delay_seconds: float) -> None:
        fire_at = self._clock() + max(0.0, float(delay_seconds))
        trigger = self.database.replace_triggers(job_name, fire_at)
        logger.info(
            f"Scheduled re-invocation of job {job_name} in {delay_seconds}s "
            f"(trigger {trigger.trigger_id})"
        )

    def cancel_all(self, job_name: str) -> int:
        removed = self.database.delete_triggers(job_name)
        if removed:
            logger.info(f"Cancelled {removed} pending re-invocation(s) of job {job_name}")
        return removed

    def pending(self, job_name: str) -> list[Trigger]:
        return self.database.list_triggers(job_name)

    def next_fire_at(self, job_name: str) -> Optional[float]:
        """Epoch time of the next pending re-invocation, or None."""
        triggers = self.pending(job_name)
        return triggers[0].fire_at if triggers else None

    def claim_due(self) -> list[Trigger]:
        """Remove and return all triggers due now."""
        return self.database.claim_due_triggers(self._clock())
