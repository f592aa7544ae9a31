"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Engine tunables (window sizes, fertility offsets, sync timings) live in
    ``src/cycles/cycle_config.yaml``; this class only covers deployment.
    """

    # --- App ---
    app_name: str = "Lua"
    app_version: str = "0.1.0"
    debug: bool = False  # overrides log_level with DEBUG
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Storage ---
    database_url: str = ""  # empty -> in-memory store
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5

    # --- Engine config ---
    cycle_config_path: str = ""  # empty -> bundled cycle_config.yaml

    # --- Google Drive backup ---
    google_client_id: str = ""
    google_client_secret: str = ""
    google_refresh_token: str = ""  # server-side only, never log
    backup_file_name: str = "lua-backup.json"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "LUA_"}

    @property
    def drive_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_refresh_token)

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level


@lru_cache
def get_settings() -> Settings:
    return Settings()
