"""
Infrastructure module - logging and environment configuration.
"""

from .logging_config import setup_logging

from .config import (
    AppSettings,
    DocumentDistributionConfig,
    FolderCreationConfig,
    GrantJobConfig,
    get_env_bool,
    get_env_float,
    get_env_int,
    get_env_list,
    list_configured_jobs,
    load_app_settings,
    load_document_config,
    load_folder_config,
    load_job_config,
)

__all__ = [
    # logging
    "setup_logging",
    # config
    "AppSettings",
    "DocumentDistributionConfig",
    "FolderCreationConfig",
    "GrantJobConfig",
    "get_env_bool",
    "get_env_float",
    "get_env_int",
    "get_env_list",
    "list_configured_jobs",
    "load_app_settings",
    "load_document_config",
    "load_folder_config",
    "load_job_config",
]
