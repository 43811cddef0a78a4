"""
Trigger Runner.

Polls the scheduler bridge for due re-invocations and starts each job in a
fresh process, so nothing held in memory by one invocation is visible to
the next.

Each trigger is removed from the table before its job is launched: a crash
during launch loses at most that one re-invocation, never duplicates it.
"""

import logging
import subprocess
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from .entities import Trigger
from .scheduler_bridge import SqliteSchedulerBridge


logger = logging.getLogger(__name__)


class JobLauncher(Protocol):
    """Starts one invocation of a job."""

    def launch(self, job_name: str) -> int:
        """Run the job to completion and return its exit code."""
        ...


class SubprocessJobLauncher:
    """
    Launches `python main.py run <job>` as a subprocess.

    Output of each invocation goes to its own log file under logs_dir.
    """

    def __init__(self, project_root: Path, logs_dir: Path):
        """
        Args:
            project_root: Directory holding main.py (subprocess cwd)
            logs_dir: Directory for per-invocation output
        """
        self.project_root = Path(project_root)
        self.logs_dir = Path(logs_dir)

    def build_command(self, job_name: str) -> list[str]:
        return [sys.executable, str(self.project_root / "main.py"), "run", job_name]

    def launch(self, job_name: str) -> int:
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = self.logs_dir / f"trigger_{job_name}_{timestamp}.log"

        cmd = self.build_command(job_name)
        logger.info(f"Launching job {job_name}: {' '.join(cmd)}")

        with open(log_path, "w") as log_file:
            process = subprocess.Popen(
                cmd,
                cwd=self.project_root,
                stdout=log_file,
                stderr=subprocess.STDOUT,
            )
            exit_code = process.wait()

        if exit_code != 0:
            logger.error(f"Job {job_name} exited with code {exit_code} (see {log_path})")
        return exit_code


class TriggerRunner:
    """
    Single-worker poll loop over due triggers.

    Usage:
        runner = TriggerRunner(bridge, SubprocessJobLauncher(root, logs))
        runner.start(blocking=True)
    """

    def __init__(
        self,
        bridge: SqliteSchedulerBridge,
        launcher: JobLauncher,
        poll_interval: float = 15.0,
    ):
        self.bridge = bridge
        self.launcher = launcher
        self.poll_interval = poll_interval

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def run_due(self) -> list[tuple[Trigger, int]]:
        """
        Launch every trigger that is due now.

        Returns:
            (trigger, exit_code) per launched job; -1 if the launch failed
        """
        results = []
        claimed = self.bridge.claim_due()
        for index, trigger in enumerate(claimed):
            if self._stop_event.is_set():
                # Put the rest back so the next runner picks them up
                for remaining in claimed[index:]:
                    self.bridge.schedule(remaining.job_name, 0)
                break
            try:
                exit_code = self.launcher.launch(trigger.job_name)
            except OSError as e:
                logger.error(f"Could not launch job {trigger.job_name}: {e}")
                exit_code = -1
            results.append((trigger, exit_code))
        return results

    def start(self, blocking: bool = False) -> None:
        """
        Start the poll loop.

        Args:
            blocking: If True, run in current thread. If False, run in background.
        """
        if self.is_running():
            raise RuntimeError("Trigger runner already started")

        self._stop_event.clear()
        if blocking:
            self._poll_loop()
        else:
            self._thread = threading.Thread(target=self._poll_loop, daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 30.0) -> None:
        """Stop the poll loop, letting a running job finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Trigger runner thread did not stop within timeout")
            self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _poll_loop(self) -> None:
        logger.info(f"Trigger runner started (poll interval {self.poll_interval}s)")

        while not self._stop_event.is_set():
            try:
                self.run_due()
            except Exception as e:
                logger.error(f"Error in trigger loop: {e}", exc_info=True)
            self._stop_event.wait(self.poll_interval)

        logger.info("Trigger runner stopped")
