"""
Roster-driven provisioning tasks outside the grant batch processor.
"""

from .documents import DistributionSummary, build_document_map, distribute_documents, document_key
from .folders import FolderCreationSummary, create_row_folders, folder_name, sanitize_folder_name

__all__ = [
    "DistributionSummary",
    "FolderCreationSummary",
    "build_document_map",
    "create_row_folders",
    "distribute_documents",
    "document_key",
    "folder_name",
    "sanitize_folder_name",
]
