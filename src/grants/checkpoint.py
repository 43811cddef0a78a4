"""
Checkpoint Store.

Persists one CheckpointState per job in the state database, using the
string keys:
- <job_name>_cursor: decimal integer string
- <job_name>_continuous: "true" or absent

The batch executor relies on this as the sole source of resume position.
All operations are idempotent.
"""

import logging
from typing import Optional

from .entities import CheckpointState
from .persistence import StateDatabase


logger = logging.getLogger(__name__)

CURSOR_SUFFIX = "_cursor"
CONTINUOUS_SUFFIX = "_continuous"


def cursor_key(job_name: str) -> str:
    return f"{job_name}{CURSOR_SUFFIX}"


def continuous_key(job_name: str) -> str:
    return f"{job_name}{CONTINUOUS_SUFFIX}"


class CheckpointStore:
    """Durable key/value checkpoint storage keyed by job name."""

    def __init__(self, database: StateDatabase):
        self.database = database

    def load(self, job_name: str) -> Optional[CheckpointState]:
        """
        Load the checkpoint for a job.

        Returns:
            CheckpointState, or None if the job has never checkpointed
            (or its cursor value is unreadable)
        """
        raw_cursor = self.database.get_property(cursor_key(job_name))
        if raw_cursor is None:
            return None

        try:
            cursor_row = int(raw_cursor)
            return CheckpointState(
                cursor_row=cursor_row,
                continuous_mode=self.is_continuous(job_name),
            )
        except ValueError:
            logger.warning(
                f"Ignoring unreadable checkpoint for job {job_name}: {raw_cursor!r}"
            )
            return None

    def save(self, job_name: str, state: CheckpointState) -> None:
        """Persist cursor and continuous flag together."""
        self.database.set_properties({
            cursor_key(job_name): str(state.cursor_row),
            continuous_key(job_name): "true" if state.continuous_mode else None,
        })
        logger.debug(
            f"Checkpoint saved for job {job_name}: cursor={state.cursor_row}, "
            f"continuous={state.continuous_mode}"
        )

    def clear(self, job_name: str) -> None:
        """Delete the checkpoint (cursor and continuous flag)."""
        self.database.set_properties({
            cursor_key(job_name): None,
            continuous_key(job_name): None,
        })
        logger.debug(f"Checkpoint cleared for job {job_name}")

    def is_continuous(self, job_name: str) -> bool:
        """Check whether continuous mode is enabled for a job."""
        return self.database.get_property(continuous_key(job_name)) == "true"

    def set_continuous(self, job_name: str, enabled: bool) -> None:
        """Enable or remove the continuous-mode flag, leaving the cursor untouched."""
        self.database.set_properties({
            continuous_key(job_name): "true" if enabled else None,
        })
