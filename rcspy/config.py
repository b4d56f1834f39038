"""Configuration settings for the rcspy scanner.

All settings are loaded from environment variables (or a ``.env`` file) using
pydantic-settings. The ``get_settings()`` function returns a cached singleton
instance.

Environment variables are case-insensitive and prefixed with ``RCSPY_``;
unknown variables are silently ignored.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Scanner settings loaded from environment variables.

    Attributes:
        cache_dir: Directory holding the analysis cache documents.
        packages_dir: Directory scanned for ``*.apk`` archives by the
            directory-backed package source.
        max_parallel_analysis: Batch size; number of packages analyzed
            concurrently inside one batch.
        worker_pool_kind: ``process`` runs archive extraction in worker
            processes, ``thread`` in worker threads.
        remote_config_host: Host of the Firebase Remote Config fetch API.
        remote_config_namespace: Remote Config namespace queried by the probe.
        remote_config_timeout_seconds: Timeout for one Remote Config fetch.
        supabase_timeout_seconds: Timeout for the bucket and storage object
            listings.
        supabase_table_timeout_seconds: Timeout for each probed table.
        hide_empty_remote_config: Do not count an accessible Remote Config
            as vulnerable when it exposes fewer than ``min_config_values``
            entries.
        min_config_values: Minimum number of exposed Remote Config entries
            for an accessible config to be considered vulnerable.
        api_host: Bind address for the API server.
        api_port: Bind port for the API server.
        api_log_level: Logging level (debug, info, warning, error, critical).
    """

    model_config = SettingsConfigDict(
        env_prefix="RCSPY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    cache_dir: Path = Path.home() / ".rcspy"
    packages_dir: Path = Path("packages")

    # Analysis
    max_parallel_analysis: int = Field(default=4, ge=1)
    worker_pool_kind: Literal["process", "thread"] = "process"

    # Firebase Remote Config
    remote_config_host: str = "firebaseremoteconfig.googleapis.com"
    remote_config_namespace: str = "firebase"
    remote_config_timeout_seconds: float = 15.0

    # Supabase
    supabase_timeout_seconds: float = 10.0
    supabase_table_timeout_seconds: float = 5.0

    # Vulnerability threshold
    hide_empty_remote_config: bool = True
    min_config_values: int = Field(default=1, ge=0)

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_log_level: str = "info"


@lru_cache
def get_settings() -> Settings:
    """Get or create the cached settings singleton.

    Returns:
        Cached Settings instance.
    """
    return Settings()
