"""Tests for the Google Drive client against a mocked httpx client."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.cycles.exceptions import DriveApiError, SyncError
from src.cycles.sync.drive import DriveClient


def make_response(status: int = 200, json_body: dict | None = None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.is_success = 200 <= status < 300
    response.json = MagicMock(return_value=json_body or {})
    response.text = text
    return response


def make_client(*responses: MagicMock) -> MagicMock:
    client = MagicMock()
    client.request = AsyncMock(side_effect=list(responses))
    return client


class TestFindAndRead:
    @pytest.mark.asyncio
    async def test_find_returns_first_id(self) -> None:
        client = make_client(make_response(json_body={"files": [{"id": "abc"}, {"id": "def"}]}))
        drive = DriveClient(client)
        assert await drive.find_backup_file("tok") == "abc"

        method, url = client.request.call_args.args
        kwargs = client.request.call_args.kwargs
        assert method == "GET"
        assert url == "https://www.googleapis.com/drive/v3/files"
        assert kwargs["params"]["q"] == "name='lua-backup.json' and trashed=false"
        assert kwargs["params"]["spaces"] == "drive"
        assert kwargs["headers"]["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_find_none_when_missing(self) -> None:
        drive = DriveClient(make_client(make_response(json_body={"files": []})))
        assert await drive.find_backup_file("tok") is None

    @pytest.mark.asyncio
    async def test_custom_backup_name(self) -> None:
        client = make_client(make_response(json_body={}))
        await DriveClient(client, backup_name="other.json").find_backup_file("tok")
        assert "other.json" in client.request.call_args.kwargs["params"]["q"]

    @pytest.mark.asyncio
    async def test_read_file_returns_text(self) -> None:
        client = make_client(make_response(text='{"version": 1}'))
        assert await DriveClient(client).read_file("abc", "tok") == '{"version": 1}'
        assert client.request.call_args.kwargs["params"] == {"alt": "media"}


class TestUpload:
    @pytest.mark.asyncio
    async def test_create_uses_multipart(self) -> None:
        client = make_client(make_response(json_body={"id": "new-id"}))
        file_id = await DriveClient(client).create_file('{"periods": []}', "tok")
        assert file_id == "new-id"

        method, url = client.request.call_args.args
        kwargs = client.request.call_args.kwargs
        assert method == "POST"
        assert url == "https://www.googleapis.com/upload/drive/v3/files"
        assert kwargs["params"] == {"uploadType": "multipart", "fields": "id"}
        assert kwargs["headers"]["Content-Type"] == "multipart/related; boundary=---lua-backup-boundary"
        body = kwargs["content"].decode("utf-8")
        assert '"name": "lua-backup.json"' in body
        assert '{"periods": []}' in body
        assert body.endswith("-----lua-backup-boundary--")

    @pytest.mark.asyncio
    async def test_update_patches_media(self) -> None:
        client = make_client(make_response())
        await DriveClient(client).update_file("abc", "{}", "tok")
        method, url = client.request.call_args.args
        assert method == "PATCH"
        assert url == "https://www.googleapis.com/upload/drive/v3/files/abc"
        assert client.request.call_args.kwargs["params"] == {"uploadType": "media"}


class TestErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403, 404, 500])
    async def test_non_2xx_raises_with_status(self, status: int) -> None:
        drive = DriveClient(make_client(make_response(status=status)))
        with pytest.raises(DriveApiError, match=f"Drive API error: {status}") as exc_info:
            await drive.find_backup_file("tok")
        assert exc_info.value.status == status

    @pytest.mark.asyncio
    async def test_transport_error_becomes_sync_error(self) -> None:
        client = MagicMock()
        client.request = AsyncMock(side_effect=httpx.ConnectError("offline"))
        with pytest.raises(SyncError, match="offline"):
            await DriveClient(client).read_file("abc", "tok")
