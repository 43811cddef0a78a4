"""
Roster grants - command line entry point.

Sub-commands:
  run <job>               run one invocation (one slice) of a grant job
  start <job>             enable continuous mode and run the first invocation
  stop <job>              disable continuous mode and cancel re-invocations
  status <job>            show checkpoint and scheduling state
  serve-triggers          launch due re-invocations until interrupted
  create-folders          create a folder for every roster row without one
  distribute-documents    move roster documents into student folders
  serve-api               run the HTTP control plane
"""

import argparse
import json
import logging
import signal
import sys
from typing import Optional

from dotenv import load_dotenv

from src.adapters.google_drive import GoogleDriveStore
from src.adapters.google_http import GoogleApiClient
from src.adapters.google_sheets import GoogleSheetsTable
from src.grants.entities import ExecutorState
from src.grants.errors import ConfigurationError, JobNotFoundError, ProvisioningError
from src.grants.persistence import StateDatabase
from src.grants.scheduler_bridge import SqliteSchedulerBridge
from src.grants.service import GrantJobService
from src.grants.trigger_runner import SubprocessJobLauncher, TriggerRunner
from src.infra.config import AppSettings, load_app_settings, load_document_config, load_folder_config
from src.infra.logging_config import setup_logging
from src.provisioning.documents import distribute_documents
from src.provisioning.folders import create_row_folders


load_dotenv()

logger = logging.getLogger("src.main")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Roster-driven access grants with quota-aware checkpointing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One slice of the default job
  python main.py run share_planning_folders

  # Keep going until the roster is done (re-invocations via serve-triggers)
  python main.py start share_planning_folders
  python main.py serve-triggers

  # Preview, then create, one folder per student under a parent folder
  python main.py create-folders --parent-folder <FOLDER_ID> --dry-run
  python main.py create-folders --parent-folder <FOLDER_ID>

  # Move PDFs from a source folder into each student's folder
  python main.py distribute-documents --source-folder <FOLDER_ID>
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("run", "Run one invocation of a job"),
        ("start", "Enable continuous mode and run the first invocation"),
        ("stop", "Disable continuous mode and cancel pending re-invocations"),
        ("status", "Show checkpoint and scheduling state"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("job", help="Job name (see GRANT_JOBS)")

    serve = subparsers.add_parser("serve-triggers", help="Launch due re-invocations until interrupted")
    serve.add_argument(
        "--poll-seconds",
        type=float,
        default=None,
        help="Poll interval in seconds (default: TRIGGER_POLL_SECONDS or 15)"
    )

    folders = subparsers.add_parser("create-folders", help="Create a folder for every roster row without one")
    folders.add_argument(
        "--parent-folder",
        type=str,
        default=None,
        help="Parent folder id (default: FOLDERS_PARENT_FOLDER_ID)"
    )
    folders.add_argument(
        "--dry-run",
        action="store_true",
        help="Report planned folders without creating anything"
    )

    docs = subparsers.add_parser("distribute-documents", help="Move roster documents into student folders")
    docs.add_argument(
        "--source-folder",
        type=str,
        default=None,
        help="Source folder id (default: DOCS_SOURCE_FOLDER_ID)"
    )

    api = subparsers.add_parser("serve-api", help="Run the HTTP control plane")
    api.add_argument("--host", type=str, default="127.0.0.1")
    api.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def run_job_command(settings: AppSettings, command: str, job_name: str) -> int:
    """Handle run/start/stop/status."""
    service = GrantJobService.create(settings.state_db_path, settings.google_access_token)

    if command == "stop":
        removed = service.stop(job_name)
        _print_json({"job_name": job_name, "stopped": True, "cancelled_triggers": removed})
        return EXIT_OK

    if command == "status":
        _print_json(service.status(job_name))
        return EXIT_OK

    result = service.start(job_name) if command == "start" else service.run_once(job_name)
    _print_json(result.to_dict())
    if result.state == ExecutorState.ERROR_ABORT:
        return EXIT_CONFIG
    return EXIT_OK


def serve_triggers(settings: AppSettings, poll_seconds: Optional[float]) -> int:
    """Run the trigger runner in the foreground until SIGINT/SIGTERM."""
    bridge = SqliteSchedulerBridge(StateDatabase(settings.state_db_path))
    runner = TriggerRunner(
        bridge,
        SubprocessJobLauncher(settings.project_root, settings.project_root / settings.log_dir),
        poll_interval=poll_seconds or settings.trigger_poll_seconds,
    )

    def signal_handler(signum, frame):
        logger.info(f"Signal {signum} received - stopping after the current job")
        runner.stop(timeout=0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    runner.start(blocking=True)
    return EXIT_OK


def run_distribution(settings: AppSettings, source_folder: Optional[str]) -> int:
    config = load_document_config(source_folder)
    if not config.spreadsheet_id:
        raise ConfigurationError("Spreadsheet not configured (DOCS_SPREADSHEET_ID)")

    with GoogleApiClient(settings.google_access_token) as client:
        summary = distribute_documents(
            config,
            GoogleSheetsTable(client, config.spreadsheet_id, config.sheet_name),
            GoogleDriveStore(client),
        )
    _print_json(summary.to_dict())
    return EXIT_FAILED if summary.rate_limited else EXIT_OK


def run_folder_creation(settings: AppSettings, parent_folder: Optional[str], dry_run: bool) -> int:
    config = load_folder_config(parent_folder)
    if not config.spreadsheet_id:
        raise ConfigurationError("Spreadsheet not configured (FOLDERS_SPREADSHEET_ID)")

    with GoogleApiClient(settings.google_access_token) as client:
        summary = create_row_folders(
            config,
            GoogleSheetsTable(client, config.spreadsheet_id, config.sheet_name),
            GoogleDriveStore(client),
            dry_run=dry_run,
        )
    _print_json(summary.to_dict())
    return EXIT_FAILED if summary.rate_limited else EXIT_OK


def serve_api(host: str, port: int) -> int:
    import uvicorn
    uvicorn.run("src.api.main:app", host=host, port=port)
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    settings = load_app_settings()
    setup_logging(settings.log_level, settings.log_dir)

    try:
        if args.command in ("run", "start", "stop", "status"):
            return run_job_command(settings, args.command, args.job)
        if args.command == "serve-triggers":
            return serve_triggers(settings, args.poll_seconds)
        if args.command == "create-folders":
            return run_folder_creation(settings, args.parent_folder, args.dry_run)
        if args.command == "distribute-documents":
            return run_distribution(settings, args.source_folder)
        if args.command == "serve-api":
            return serve_api(args.host, args.port)
    except (JobNotFoundError, ConfigurationError) as e:
        logger.error(str(e))
        return EXIT_CONFIG
    except ProvisioningError as e:
        logger.error(f"{args.command} failed: {e}")
        return EXIT_FAILED

    return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
