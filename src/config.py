"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Forela Health Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Supabase ---
    # Direct postgres connection string for asyncpg. Empty = in-memory stores.
    supabase_db_url: str = ""
    db_pool_min_size: int = 2
    db_pool_max_size: int = 20

    # --- Oura OAuth2 ---
    oura_client_id: str = ""
    oura_client_secret: str = ""  # server-side only, never expose to client
    oura_redirect_uri: str = "http://localhost:3000/settings"
    oura_scope: str = "email personal daily"

    # --- Providers ---
    # Serve mock readings when a provider is unavailable. None = on outside production.
    health_mock_fallback: bool | None = None
    http_timeout_seconds: float = 20.0

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def mock_fallback_enabled(self) -> bool:
        if self.health_mock_fallback is not None:
            return self.health_mock_fallback
        return self.environment != "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
