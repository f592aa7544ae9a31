"""Google Drive backup session.

One ``SyncSession`` per running app.  It keeps the sync status the UI
shows plus the bookkeeping the upload flow needs (cached Drive file id,
pending debounce task, upload-in-progress flag) as plain instance state.

Flow:
    1. ``init()``              - restore lastSyncedAt and the connected flag
    2. ``download_on_start()`` - restore the remote backup if it is newer
    3. ``weekly_backup_if_needed()``
    4. ``upload_after_mutation()`` after each local write (debounced)

Conflict policy is last-write-wins on whole documents: the remote backup
replaces local data only when its ``exportedAt`` is newer than the local
``lastSyncedAt``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from src.cycles.config_loader import SyncConfig, get_cycle_config
from src.cycles.exceptions import (
    AuthExpiredError,
    DriveApiError,
    ImportValidationError,
    StorageError,
    SyncError,
)
from src.cycles.import_export import export_data, validate_period
from src.cycles.store import LAST_SYNCED_AT, PeriodStore
from src.cycles.sync.auth import TokenManager
from src.cycles.sync.drive import DriveClient
from src.models.base import parse_timestamp, to_timestamp, utc_now

logger = logging.getLogger("lua.cycles.sync.session")

T = TypeVar("T")


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class SyncSession:
    """Uploads and restores the backup document on Google Drive."""

    def __init__(
        self,
        store: PeriodStore,
        tokens: TokenManager,
        drive: DriveClient | None = None,
        *,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._drive = drive or DriveClient()
        self._config = config or get_cycle_config().sync
        self._clock = clock or utc_now

        self.status = SyncStatus.IDLE
        self.last_synced_at: str | None = None
        self.error: str | None = None
        self.connected = False
        self.drive_file_id: str | None = None

        self._debounce_task: asyncio.Task[None] | None = None
        self._upload_in_progress = False
        self._upload_pending = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Restore state from the store; stored tokens mean still connected."""
        last = await self._store.get_meta(LAST_SYNCED_AT)
        if last:
            self.last_synced_at = last
        self.connected = self._tokens.has_token
        logger.info(
            "Sync initialised (connected=%s, last_synced_at=%s)",
            self.connected,
            self.last_synced_at,
        )

    def connect(self, access_token: str, expires_in: int, refresh_token: str | None = None) -> None:
        """Record tokens from a completed consent flow."""
        self._tokens.store_token(access_token, expires_in, refresh_token)
        self.connected = True
        self._set_status(SyncStatus.IDLE)

    async def disconnect(self) -> None:
        self._cancel_pending()
        self._upload_pending = False
        await self._tokens.disconnect()
        self.connected = False
        self.drive_file_id = None
        self._set_status(SyncStatus.IDLE)

    async def close(self) -> None:
        """Cancel a pending debounced upload without running it."""
        task = self._cancel_pending()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload_after_mutation(self) -> None:
        """Schedule an upload ``debounce_seconds`` from now, replacing any pending one.

        Must be called from a running event loop.
        """
        if not self.connected:
            return
        self._cancel_pending()
        self._debounce_task = asyncio.create_task(self._debounced_upload())

    async def _debounced_upload(self) -> None:
        await asyncio.sleep(self._config.debounce_seconds)
        self._debounce_task = None
        await self.upload_now()

    async def sync_now(self) -> None:
        """Upload immediately, dropping any pending debounced upload."""
        self._cancel_pending()
        await self.upload_now()

    async def upload_now(self) -> None:
        """Export local data and write it to the Drive backup file.

        No-op when disconnected.  A call made while another upload is
        running is deferred: one more debounced upload is scheduled when
        the running one finishes, so later writes still reach Drive.
        Failures are recorded in ``status`` / ``error``, not raised.
        """
        if not self.connected:
            return
        if self._upload_in_progress:
            self._upload_pending = True
            return

        self._upload_in_progress = True
        try:
            token = await self._valid_token_or_disconnect()
            if token is None:
                return
            self._set_status(SyncStatus.SYNCING)
            content = await export_data(self._store, now=self._clock())

            async def _upload(tok: str) -> None:
                if not self.drive_file_id:
                    self.drive_file_id = await self._drive.find_backup_file(tok)
                if self.drive_file_id:
                    await self._drive.update_file(self.drive_file_id, content, tok)
                else:
                    self.drive_file_id = await self._drive.create_file(content, tok)

            await self._with_refresh_retry(_upload, token)

            now = to_timestamp(self._clock())
            await self._store.set_meta(LAST_SYNCED_AT, now)
            self.last_synced_at = now
            self._set_status(SyncStatus.SUCCESS)
            logger.info("Backup uploaded to Drive file %s", self.drive_file_id)
        except DriveApiError as exc:
            self._handle_drive_error(exc)
            self._set_status(SyncStatus.ERROR, str(exc))
        except AuthExpiredError as exc:
            self.connected = False
            self.drive_file_id = None
            self._set_status(SyncStatus.ERROR, str(exc))
        except (SyncError, StorageError) as exc:
            logger.warning("Backup upload failed: %s", exc)
            self._set_status(SyncStatus.ERROR, str(exc) or "Sync failed")
        finally:
            self._upload_in_progress = False
            if self._upload_pending:
                self._upload_pending = False
                self.upload_after_mutation()

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def download_on_start(self) -> None:
        """Restore the remote backup when it is newer than the last local sync.

        Local data is replaced in a single store transaction and is never
        touched when the remote document is unreadable or invalid.
        """
        if not self.connected:
            return

        token = await self._valid_token_or_disconnect()
        if token is None:
            return

        self._set_status(SyncStatus.SYNCING)
        try:
            async def _fetch(tok: str) -> str | None:
                self.drive_file_id = await self._drive.find_backup_file(tok)
                if not self.drive_file_id:
                    return None
                return await self._drive.read_file(self.drive_file_id, tok)

            content = await self._with_refresh_retry(_fetch, token)
            if content is None:
                logger.info("No Drive backup found")
                self._set_status(SyncStatus.IDLE)
                return

            try:
                remote = json.loads(content)
            except json.JSONDecodeError:
                self._set_status(SyncStatus.ERROR, "Backup file is corrupted")
                return

            exported_at = remote.get("exportedAt") if isinstance(remote, dict) else None
            if not exported_at or not isinstance(exported_at, str):
                self._set_status(SyncStatus.IDLE)
                return

            local_ts = await self._store.get_meta(LAST_SYNCED_AT)
            if not self._remote_is_newer(exported_at, local_ts):
                self.last_synced_at = local_ts
                self._set_status(SyncStatus.SUCCESS)
                return

            raw_periods = remote.get("periods")
            if not isinstance(raw_periods, list):
                self._set_status(SyncStatus.ERROR, "Invalid backup format")
                return
            try:
                periods = [validate_period(raw, i) for i, raw in enumerate(raw_periods, start=1)]
            except ImportValidationError as exc:
                logger.warning("Remote backup rejected: %s", exc)
                self._set_status(SyncStatus.ERROR, "Invalid backup format")
                return

            now = to_timestamp(self._clock())
            await self._store.replace_all(periods, meta={LAST_SYNCED_AT: now})
            self.last_synced_at = now
            self._set_status(SyncStatus.SUCCESS)
            logger.info("Restored %d periods from Drive backup (%s)", len(periods), exported_at)
        except DriveApiError as exc:
            self._handle_drive_error(exc)
            self._set_status(SyncStatus.ERROR, str(exc))
        except AuthExpiredError as exc:
            self.connected = False
            self.drive_file_id = None
            self._set_status(SyncStatus.ERROR, str(exc))
        except (SyncError, StorageError) as exc:
            logger.warning("Backup download failed: %s", exc)
            self._set_status(SyncStatus.ERROR, str(exc) or "Download failed")

    @staticmethod
    def _remote_is_newer(exported_at: str, local_ts: str | None) -> bool:
        if not local_ts:
            return True
        try:
            return parse_timestamp(exported_at) > parse_timestamp(local_ts)
        except ValueError:
            logger.warning("Unparseable backup timestamp %r; keeping local data", exported_at)
            return False

    # ------------------------------------------------------------------
    # Weekly heartbeat
    # ------------------------------------------------------------------

    async def weekly_backup_if_needed(self) -> None:
        """Upload when never synced or the last sync is ``weekly_backup_days`` old."""
        if not self.connected:
            return
        last = await self._store.get_meta(LAST_SYNCED_AT)
        if not last:
            await self.upload_now()
            return
        try:
            elapsed = self._clock() - parse_timestamp(last)
        except ValueError:
            logger.warning("Unparseable lastSyncedAt %r; uploading", last)
            await self.upload_now()
            return
        if elapsed >= timedelta(days=self._config.weekly_backup_days):
            logger.info("Last backup is %s old; uploading", elapsed)
            await self.upload_now()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _valid_token_or_disconnect(self) -> str | None:
        token = await self._tokens.get_valid_token()
        if token is None:
            logger.info("No valid Drive token; marking session disconnected")
            self.connected = False
            self._set_status(SyncStatus.IDLE)
        return token

    async def _with_refresh_retry(self, operation: Callable[[str], Awaitable[T]], token: str) -> T:
        """Run ``operation(token)``; on a 401, refresh once and retry."""
        try:
            return await operation(token)
        except DriveApiError as exc:
            if exc.status != 401:
                raise
            self._tokens.invalidate()
            fresh = await self._tokens.get_valid_token()
            if fresh is None:
                raise AuthExpiredError(
                    "Google Drive access expired; reconnect to resume backups"
                ) from exc
            logger.info("Drive returned 401; retrying with a refreshed token")
            return await operation(fresh)

    def _handle_drive_error(self, exc: DriveApiError) -> None:
        if exc.status == 401:
            self.connected = False
            self.drive_file_id = None
        elif exc.status == 404:
            # Cached file was deleted externally; look it up again next time
            self.drive_file_id = None

    def _cancel_pending(self) -> asyncio.Task[None] | None:
        task = self._debounce_task
        self._debounce_task = None
        if task is not None and not task.done():
            task.cancel()
            return task
        return None

    def _set_status(self, status: SyncStatus, error: str | None = None) -> None:
        self.status = status
        self.error = error
        if status is SyncStatus.ERROR:
            logger.warning("Sync error: %s", error)
