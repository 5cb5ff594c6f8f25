"""
client/config.py -- Client-side configuration via pydantic-settings.

Same pattern as core/config.py, separate class so the client never needs the
server's SECRET_KEY to start. Env vars carry the BOOKCATALOG_CLIENT_ prefix,
e.g. BOOKCATALOG_CLIENT_BASE_URL.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BOOKCATALOG_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = "http://localhost:8000"
    # None keeps local storage in memory only (nothing survives the process).
    storage_path: Optional[Path] = Path.home() / ".bookcatalog" / "local_storage.json"
    timeout: float = 10.0
    # Undo an optimistic removal when the server call fails.
    rollback_on_failure: bool = True


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()
