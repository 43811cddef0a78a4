"""
Google Drive implementation of ObjectStore (Drive API v3).

Folders accept reader grants only; files accept reader and commenter.
"""

import logging
from typing import Iterator, Optional

from src.grants.entities import GrantLevel, RemoteHandle, ResourceKind
from src.grants.errors import RemoteOperationError

from .base import ObjectStore
from .google_http import GoogleApiClient


logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,mimeType"
PAGE_SIZE = 1000

ROLES = {
    GrantLevel.VIEW: "reader",
    GrantLevel.COMMENT: "commenter",
}


def _quote_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _to_handle(item: dict) -> RemoteHandle:
    mime_type = item.get("mimeType")
    return RemoteHandle(
        resource_id=item["id"],
        name=item.get("name", ""),
        kind=ResourceKind.FOLDER if mime_type == FOLDER_MIME_TYPE else ResourceKind.FILE,
        mime_type=mime_type,
        web_url=item.get("webViewLink"),
    )


class GoogleDriveStore(ObjectStore):
    """Drive folders and files."""

    def __init__(self, client: GoogleApiClient, send_notification_email: bool = False):
        self.client = client
        self.send_notification_email = send_notification_email

    def _paginate(self, url: str, params: dict, key: str) -> Iterator[dict]:
        page_token = None
        while True:
            page_params = dict(params)
            if page_token:
                page_params["pageToken"] = page_token
            data = self.client.request("GET", url, params=page_params)
            yield from data.get(key, [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return

    def _list(self, query: str) -> list[RemoteHandle]:
        return [
            _to_handle(item)
            for item in self._paginate(
                f"{DRIVE_API_URL}/files",
                {
                    "q": query,
                    "fields": f"nextPageToken, files({FILE_FIELDS})",
                    "pageSize": PAGE_SIZE,
                    "supportsAllDrives": "true",
                    "includeItemsFromAllDrives": "true",
                },
                "files",
            )
        ]

    def get_container(self, container_id: str) -> RemoteHandle:
        data = self.client.request(
            "GET",
            f"{DRIVE_API_URL}/files/{container_id}",
            params={"fields": FILE_FIELDS, "supportsAllDrives": "true"},
        )
        handle = _to_handle(data)
        if handle.kind != ResourceKind.FOLDER:
            raise RemoteOperationError(f"{container_id} is not a folder ({handle.mime_type})")
        return handle

    def list_children(self, container: RemoteHandle) -> list[RemoteHandle]:
        return self._list(
            f"'{_quote_query(container.resource_id)}' in parents and trashed = false"
        )

    def get_authorized_principals(self, handle: RemoteHandle) -> set[str]:
        permissions = self._paginate(
            f"{DRIVE_API_URL}/files/{handle.resource_id}/permissions",
            {
                "fields": "nextPageToken, permissions(emailAddress,role,type)",
                "supportsAllDrives": "true",
            },
            "permissions",
        )
        return {p["emailAddress"].lower() for p in permissions if p.get("emailAddress")}

    def grant(self, handle: RemoteHandle, principal: str, level: GrantLevel) -> None:
        self.client.request(
            "POST",
            f"{DRIVE_API_URL}/files/{handle.resource_id}/permissions",
            params={
                "sendNotificationEmail": "true" if self.send_notification_email else "false",
                "supportsAllDrives": "true",
            },
            json={"type": "user", "role": ROLES[level], "emailAddress": principal},
        )
        logger.debug(f"Granted {ROLES[level]} on {handle.resource_id} to {principal}")

    def list_files(self, container: RemoteHandle, mime_type: Optional[str] = None) -> list[RemoteHandle]:
        query = f"'{_quote_query(container.resource_id)}' in parents and trashed = false"
        if mime_type:
            query += f" and mimeType = '{_quote_query(mime_type)}'"
        return self._list(query)

    def copy_file(self, file: RemoteHandle, destination: RemoteHandle) -> RemoteHandle:
        data = self.client.request(
            "POST",
            f"{DRIVE_API_URL}/files/{file.resource_id}/copy",
            params={"fields": FILE_FIELDS, "supportsAllDrives": "true"},
            json={"name": file.name, "parents": [destination.resource_id]},
        )
        return _to_handle(data)

    def trash(self, handle: RemoteHandle) -> None:
        self.client.request(
            "PATCH",
            f"{DRIVE_API_URL}/files/{handle.resource_id}",
            params={"supportsAllDrives": "true"},
            json={"trashed": True},
        )

    def create_folder(self, parent: RemoteHandle, name: str) -> RemoteHandle:
        data = self.client.request(
            "POST",
            f"{DRIVE_API_URL}/files",
            params={"fields": f"{FILE_FIELDS},webViewLink", "supportsAllDrives": "true"},
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent.resource_id]},
        )
        logger.debug(f"Created folder {name} in {parent.resource_id}")
        return _to_handle(data)
