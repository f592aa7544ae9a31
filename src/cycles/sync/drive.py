"""Google Drive v3 client for the single backup file.

API base: https://www.googleapis.com/drive/v3

Endpoints used:
    GET   /files?q=...                       - locate the backup by name
    GET   /files/{id}?alt=media              - download its content
    POST  /upload/.../files?uploadType=multipart - create it
    PATCH /upload/.../files/{id}?uploadType=media - overwrite it

The app only ever sees files it created (``drive.file`` scope).
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from src.cycles.exceptions import DriveApiError, SyncError

logger = logging.getLogger("lua.cycles.sync.drive")

_DRIVE_API = "https://www.googleapis.com/drive/v3"
_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
_BOUNDARY = "---lua-backup-boundary"
DEFAULT_BACKUP_NAME = "lua-backup.json"


class DriveClient:
    """Minimal Drive client; every call takes the bearer token explicitly."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        backup_name: str = DEFAULT_BACKUP_NAME,
    ) -> None:
        """
        Args:
            http_client: Optional pre-configured httpx client (for testing).
            backup_name: File name of the backup in the user's Drive.
        """
        self._http_client = http_client
        self.backup_name = backup_name

    async def find_backup_file(self, token: str) -> str | None:
        """Return the id of the (non-trashed) backup file, or None."""
        params = {
            "q": f"name='{self.backup_name}' and trashed=false",
            "fields": "files(id)",
            "spaces": "drive",
        }
        response = await self._request("GET", f"{_DRIVE_API}/files", token, params=params)
        files = response.json().get("files") or []
        return files[0].get("id") if files else None

    async def read_file(self, file_id: str, token: str) -> str:
        response = await self._request(
            "GET", f"{_DRIVE_API}/files/{file_id}", token, params={"alt": "media"}
        )
        return response.text

    async def create_file(self, content: str, token: str) -> str:
        """Upload a new backup file (multipart: metadata + content).

        Returns:
            The new file id.
        """
        metadata = {"name": self.backup_name, "mimeType": "application/json"}
        body = (
            f"--{_BOUNDARY}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{_BOUNDARY}\r\n"
            "Content-Type: application/json\r\n\r\n"
            f"{content}\r\n"
            f"--{_BOUNDARY}--"
        )
        response = await self._request(
            "POST",
            f"{_UPLOAD_API}/files",
            token,
            params={"uploadType": "multipart", "fields": "id"},
            headers={"Content-Type": f"multipart/related; boundary={_BOUNDARY}"},
            content=body.encode("utf-8"),
        )
        file_id = response.json()["id"]
        logger.info("Created Drive backup file %s", file_id)
        return file_id

    async def update_file(self, file_id: str, content: str, token: str) -> None:
        await self._request(
            "PATCH",
            f"{_UPLOAD_API}/files/{file_id}",
            token,
            params={"uploadType": "media"},
            headers={"Content-Type": "application/json"},
            content=content.encode("utf-8"),
        )

    # ------------------------------------------------------------------
    # Private HTTP helper
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an authenticated request to the Drive API.

        Raises:
            DriveApiError: On non-2xx responses (``status`` carries the code).
            SyncError:     On transport failures.
        """
        all_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
        try:
            if self._http_client:
                response = await self._http_client.request(method, url, headers=all_headers, **kwargs)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(method, url, headers=all_headers, **kwargs)
        except httpx.HTTPError as exc:
            raise SyncError(f"Drive request failed: {exc}") from exc

        if not response.is_success:
            logger.warning("Drive API %s %s -> %d", method, url, response.status_code)
            raise DriveApiError(f"Drive API error: {response.status_code}", response.status_code)
        return response
