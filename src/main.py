"""Lua — application entry point.

Wires the period store, the tracker and the Drive sync session together,
runs the startup sequence and logs a one-line status summary.

Run locally:
    python -m src.main
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncGenerator

from src.config import Settings, get_settings
from src.cycles.config_loader import get_cycle_config, reload_cycle_config
from src.cycles.store import InMemoryPeriodStore, PeriodStore, PostgresPeriodStore
from src.cycles.sync import DriveClient, OAuthTokens, SyncSession, TokenManager
from src.cycles.tracker import PeriodTracker
from src.services.database import close_pool, init_pool

logger = logging.getLogger("lua")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


@dataclass
class App:
    settings: Settings
    store: PeriodStore
    tracker: PeriodTracker
    sync: SyncSession


def _build_token_manager(settings: Settings) -> TokenManager:
    tokens = (
        OAuthTokens(refresh_token=settings.google_refresh_token)
        if settings.drive_enabled
        else None
    )
    return TokenManager(
        settings.google_client_id,
        settings.google_client_secret,
        tokens,
    )


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(settings: Settings | None = None) -> AsyncGenerator[App, None]:
    """Startup / shutdown hooks."""
    settings = settings or get_settings()
    logger.info("Starting %s v%s [%s]", settings.app_name, settings.app_version, settings.environment)

    if settings.cycle_config_path:
        reload_cycle_config(Path(settings.cycle_config_path))
    config = get_cycle_config()

    store: PeriodStore
    if settings.database_url:
        pool = await init_pool(settings)
        store = PostgresPeriodStore(pool)
    else:
        logger.info("No database configured; using in-memory store")
        store = InMemoryPeriodStore()

    sync = SyncSession(
        store,
        _build_token_manager(settings),
        DriveClient(backup_name=settings.backup_file_name),
        config=config.sync,
    )
    tracker = PeriodTracker(store, config=config, on_mutation=sync.upload_after_mutation)

    try:
        await sync.init()
        await sync.download_on_start()
        await tracker.load()
        await sync.weekly_backup_if_needed()
        yield App(settings=settings, store=store, tracker=tracker, sync=sync)
    finally:
        await sync.close()
        if settings.database_url:
            await close_pool()
        logger.info("%s shut down", settings.app_name)


def describe(app: App) -> str:
    state = app.tracker.state
    parts = [f"status={app.tracker.status().value}", f"periods={len(state.periods)}"]
    if state.cycle_day is not None:
        parts.append(f"cycle_day={state.cycle_day.day}/{state.cycle_day.total}")
    if state.prediction is not None:
        parts.append(
            f"next={state.prediction.predicted_start} ({state.prediction.confidence.value})"
        )
    if state.phase is not None:
        parts.append(f"phase={state.phase.phase.value}")
    parts.append(f"sync={app.sync.status.value}")
    return " ".join(parts)


async def run(settings: Settings | None = None) -> None:
    async with lifespan(settings) as app:
        logger.info(describe(app))


def main() -> None:
    settings = get_settings()
    configure_logging(settings.effective_log_level)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
