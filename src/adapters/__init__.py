"""
Remote store adapters.

- base: TabularStore / ObjectStore contracts
- google_sheets / google_drive: REST implementations over GoogleApiClient
"""

from .base import (
    ObjectStore,
    TabularStore,
    extract_resource_id,
    find_header_index,
)
from .google_drive import GoogleDriveStore
from .google_http import GoogleApiClient, classify_error
from .google_sheets import GoogleSheetsTable, a1_range, column_letter

__all__ = [
    "ObjectStore",
    "TabularStore",
    "extract_resource_id",
    "find_header_index",
    "GoogleApiClient",
    "GoogleDriveStore",
    "GoogleSheetsTable",
    "a1_range",
    "classify_error",
    "column_letter",
]
