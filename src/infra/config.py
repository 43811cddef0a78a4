"""
Environment configuration.

All settings come from environment variables, optionally loaded from a
.env file by the entry points (load_dotenv()).

Application:
- STATE_DB_PATH: SQLite state database (default: data/state.sqlite)
- LOG_DIR / LOG_LEVEL: logging destination and level
- GOOGLE_ACCESS_TOKEN: OAuth bearer token for the Sheets/Drive REST APIs
- TRIGGER_POLL_SECONDS: trigger runner poll interval (default: 15)
- GRANT_JOBS: comma-separated job names (default: share_planning_folders)

Per job, every GRANT_<FIELD> variable can be overridden with
GRANT_<JOB_NAME>_<FIELD>, e.g. GRANT_SHARE_PLANNING_FOLDERS_BATCH_SIZE.

Document distribution:
- DOCS_SPREADSHEET_ID, DOCS_SHEET_NAME, DOCS_SOURCE_FOLDER_ID,
  DOCS_ID_COLUMN, DOCS_FOLDER_HEADERS, DOCS_STATUS_HEADERS, DOCS_MIME_TYPE

Folder creation:
- FOLDERS_SPREADSHEET_ID, FOLDERS_SHEET_NAME, FOLDERS_PARENT_FOLDER_ID,
  FOLDERS_ID_COLUMN, FOLDERS_NAME_HEADERS, FOLDERS_FOLDER_HEADERS,
  FOLDERS_PREVIEW_LIMIT
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from src.grants.entities import GrantLevel
from src.grants.errors import ConfigurationError


logger = logging.getLogger(__name__)


DEFAULT_JOB_NAME = "share_planning_folders"

DEFAULT_PRINCIPAL_HEADERS = ["Student Email", "Email Address", "Email"]
DEFAULT_CONTAINER_HEADERS = [
    "Planning Folder URL",
    "Planning folder URL",
    "Planning Folder Url",
    "Planning FolderUrl",
]
DEFAULT_STATUS_HEADERS = ["Access Granted", "Shared"]
DEFAULT_DIAGNOSTIC_HEADERS = ["Share Notes"]


# =============================================================================
# Environment helpers
# =============================================================================

def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Config] Invalid integer for {key}: {val}, using default: {default}")
    return default


def get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Config] Invalid number for {key}: {val}, using default: {default}")
    return default


def get_env_list(key: str, default: list[str]) -> list[str]:
    """Get comma-separated list from environment variable."""
    val = os.getenv(key)
    if val is None:
        return list(default)
    return [item.strip() for item in val.split(",") if item.strip()]


# =============================================================================
# Application settings
# =============================================================================

@dataclass
class AppSettings:
    """Process-wide settings shared by all jobs."""

    state_db_path: Path
    log_dir: str = "logs"
    log_level: str = "INFO"
    google_access_token: str = ""
    trigger_poll_seconds: float = 15.0
    project_root: Path = field(default_factory=lambda: Path(__file__).parent.parent.parent.resolve())


def load_app_settings() -> AppSettings:
    """Read application settings from the environment."""
    project_root = Path(__file__).parent.parent.parent.resolve()
    state_db = os.getenv("STATE_DB_PATH")
    return AppSettings(
        state_db_path=Path(state_db) if state_db else project_root / "data" / "state.sqlite",
        log_dir=os.getenv("LOG_DIR", "logs"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        google_access_token=os.getenv("GOOGLE_ACCESS_TOKEN", ""),
        trigger_poll_seconds=get_env_float("TRIGGER_POLL_SECONDS", 15.0),
        project_root=project_root,
    )


def list_configured_jobs() -> list[str]:
    """Job names the service accepts."""
    return get_env_list("GRANT_JOBS", [DEFAULT_JOB_NAME])


# =============================================================================
# Grant job configuration
# =============================================================================

@dataclass
class GrantJobConfig:
    """
    Configuration for one access-grant job.

    batch_size bounds both remote-call volume and wall-clock time of a single
    invocation; time_budget_seconds stops a slice early when the hosting
    environment's execution ceiling is close.
    """

    job_name: str
    spreadsheet_id: str = ""
    sheet_name: str = "Main Roster"
    principal_headers: list = field(default_factory=lambda: list(DEFAULT_PRINCIPAL_HEADERS))
    container_headers: list = field(default_factory=lambda: list(DEFAULT_CONTAINER_HEADERS))
    status_headers: list = field(default_factory=lambda: list(DEFAULT_STATUS_HEADERS))
    diagnostic_headers: list = field(default_factory=lambda: list(DEFAULT_DIAGNOSTIC_HEADERS))
    batch_size: int = 50
    quota_error_threshold: int = 3
    flush_threshold: int = 20
    container_pause_seconds: float = 1.0
    child_pause_seconds: float = 0.2
    grant_retry_pause_seconds: float = 2.0
    continue_delay_seconds: int = 60
    quota_cooldown_seconds: int = 900
    time_budget_seconds: float = 300.0
    error_preview_limit: int = 10
    grant_level: GrantLevel = GrantLevel.VIEW
    sentinel: str = "yes"

    def validate(self) -> "GrantJobConfig":
        """
        Check value ranges.

        Raises:
            ConfigurationError: On the first invalid value
        """
        if not self.job_name:
            raise ConfigurationError("Job name must not be empty")
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.quota_error_threshold < 1:
            raise ConfigurationError(
                f"quota_error_threshold must be >= 1, got {self.quota_error_threshold}"
            )
        if self.flush_threshold < 0:
            raise ConfigurationError(f"flush_threshold must be >= 0, got {self.flush_threshold}")
        if not self.principal_headers or not self.container_headers or not self.status_headers:
            raise ConfigurationError("Principal, container and status header candidates are required")
        if not self.sentinel:
            raise ConfigurationError("Completion sentinel must not be empty")
        return self


def _job_env(job_name: str, key: str) -> str:
    """Variable name for a job field: per-job override if set, else the shared one."""
    specific = f"GRANT_{job_name.upper()}_{key}"
    if os.getenv(specific) is not None:
        return specific
    return f"GRANT_{key}"


def parse_grant_level(value: str) -> GrantLevel:
    """Parse a grant level name ("view" / "comment")."""
    try:
        return GrantLevel(value.strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Unknown grant level: {value!r} (expected one of "
            f"{', '.join(level.value for level in GrantLevel)})"
        )


def load_job_config(job_name: str) -> GrantJobConfig:
    """
    Build a job configuration from the environment.

    Raises:
        ConfigurationError: If a value is out of range
    """
    defaults = GrantJobConfig(job_name=job_name)

    def env(key: str) -> str:
        return _job_env(job_name, key)

    config = GrantJobConfig(
        job_name=job_name,
        spreadsheet_id=os.getenv(env("SPREADSHEET_ID"), defaults.spreadsheet_id),
        sheet_name=os.getenv(env("SHEET_NAME"), defaults.sheet_name),
        principal_headers=get_env_list(env("PRINCIPAL_HEADERS"), defaults.principal_headers),
        container_headers=get_env_list(env("CONTAINER_HEADERS"), defaults.container_headers),
        status_headers=get_env_list(env("STATUS_HEADERS"), defaults.status_headers),
        diagnostic_headers=get_env_list(env("DIAGNOSTIC_HEADERS"), defaults.diagnostic_headers),
        batch_size=get_env_int(env("BATCH_SIZE"), defaults.batch_size),
        quota_error_threshold=get_env_int(env("QUOTA_ERROR_THRESHOLD"), defaults.quota_error_threshold),
        flush_threshold=get_env_int(env("FLUSH_THRESHOLD"), defaults.flush_threshold),
        container_pause_seconds=get_env_float(env("CONTAINER_PAUSE_SECONDS"), defaults.container_pause_seconds),
        child_pause_seconds=get_env_float(env("CHILD_PAUSE_SECONDS"), defaults.child_pause_seconds),
        grant_retry_pause_seconds=get_env_float(env("GRANT_RETRY_PAUSE_SECONDS"), defaults.grant_retry_pause_seconds),
        continue_delay_seconds=get_env_int(env("CONTINUE_DELAY_SECONDS"), defaults.continue_delay_seconds),
        quota_cooldown_seconds=get_env_int(env("QUOTA_COOLDOWN_SECONDS"), defaults.quota_cooldown_seconds),
        time_budget_seconds=get_env_float(env("TIME_BUDGET_SECONDS"), defaults.time_budget_seconds),
        error_preview_limit=get_env_int(env("ERROR_PREVIEW_LIMIT"), defaults.error_preview_limit),
        grant_level=parse_grant_level(os.getenv(env("LEVEL"), defaults.grant_level.value)),
        sentinel=os.getenv(env("SENTINEL"), defaults.sentinel),
    )
    return config.validate()


# =============================================================================
# Document distribution configuration
# =============================================================================

@dataclass
class DocumentDistributionConfig:
    """Where roster documents come from and how rows are matched."""

    spreadsheet_id: str = ""
    sheet_name: str = "Main Roster"
    source_folder_id: str = ""
    id_column: int = 1
    folder_headers: list = field(default_factory=lambda: list(DEFAULT_CONTAINER_HEADERS))
    status_headers: list = field(default_factory=lambda: ["PDF Moved", "Moved"])
    mime_type: str = "application/pdf"
    sentinel: str = "yes"
    flush_threshold: int = 20


def load_document_config(source_folder_id: Optional[str] = None) -> DocumentDistributionConfig:
    """Build the document distribution configuration from the environment."""
    defaults = DocumentDistributionConfig()
    config = DocumentDistributionConfig(
        spreadsheet_id=os.getenv("DOCS_SPREADSHEET_ID", os.getenv("GRANT_SPREADSHEET_ID", "")),
        sheet_name=os.getenv("DOCS_SHEET_NAME", defaults.sheet_name),
        source_folder_id=source_folder_id or os.getenv("DOCS_SOURCE_FOLDER_ID", ""),
        id_column=get_env_int("DOCS_ID_COLUMN", defaults.id_column),
        folder_headers=get_env_list("DOCS_FOLDER_HEADERS", defaults.folder_headers),
        status_headers=get_env_list("DOCS_STATUS_HEADERS", defaults.status_headers),
        mime_type=os.getenv("DOCS_MIME_TYPE", defaults.mime_type),
    )
    if not config.source_folder_id:
        raise ConfigurationError("Source folder not configured (DOCS_SOURCE_FOLDER_ID)")
    if config.id_column < 1:
        raise ConfigurationError(f"DOCS_ID_COLUMN must be >= 1, got {config.id_column}")
    return config


DEFAULT_NAME_HEADERS = ["Student Name", "Name", "Full Name", "Student"]


@dataclass
class FolderCreationConfig:
    """Where per-row folders are created and how they are named."""

    spreadsheet_id: str = ""
    sheet_name: str = "Main Roster"
    parent_folder_id: str = ""
    id_column: int = 1
    name_headers: list = field(default_factory=lambda: list(DEFAULT_NAME_HEADERS))
    folder_headers: list = field(default_factory=lambda: list(DEFAULT_CONTAINER_HEADERS))
    flush_threshold: int = 20
    preview_limit: int = 10


def load_folder_config(parent_folder_id: Optional[str] = None) -> FolderCreationConfig:
    """Build the folder creation configuration from the environment."""
    defaults = FolderCreationConfig()
    config = FolderCreationConfig(
        spreadsheet_id=os.getenv("FOLDERS_SPREADSHEET_ID", os.getenv("GRANT_SPREADSHEET_ID", "")),
        sheet_name=os.getenv("FOLDERS_SHEET_NAME", defaults.sheet_name),
        parent_folder_id=parent_folder_id or os.getenv("FOLDERS_PARENT_FOLDER_ID", ""),
        id_column=get_env_int("FOLDERS_ID_COLUMN", defaults.id_column),
        name_headers=get_env_list("FOLDERS_NAME_HEADERS", defaults.name_headers),
        folder_headers=get_env_list("FOLDERS_FOLDER_HEADERS", defaults.folder_headers),
        preview_limit=get_env_int("FOLDERS_PREVIEW_LIMIT", defaults.preview_limit),
    )
    if not config.parent_folder_id:
        raise ConfigurationError("Parent folder not configured (FOLDERS_PARENT_FOLDER_ID)")
    if config.id_column < 1:
        raise ConfigurationError(f"FOLDERS_ID_COLUMN must be >= 1, got {config.id_column}")
    return config
