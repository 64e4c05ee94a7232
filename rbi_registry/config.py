"""RBI Registry — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class RegistrySettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── Database ───────────────────────────────────────────────
    # When set, overrides the PostgreSQL parts below (e.g. sqlite:///rbi.db)
    database_url: str = ""

    postgres_user: str = "rbi"
    postgres_password: str = "change-me-in-production"
    postgres_db: str = "rbi_registry"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    sqlite_busy_timeout_seconds: float = 30.0

    @property
    def database_url_sync(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # ── Household codes ────────────────────────────────────────
    household_sequence_width: int = 4

    # ── Geographic catalog ─────────────────────────────────────
    # None keeps the loaded catalog for the life of the process
    catalog_cache_ttl_seconds: float | None = None

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = RegistrySettings()
