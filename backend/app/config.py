"""Configuration settings for Watchpost."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Watchpost"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:////data/watchpost.db"
    data_dir: str = "/data"

    # Bearer tokens (falls back to a key file under data_dir when unset)
    jwt_secret_key: str | None = None
    jwt_expire_minutes: int = 24 * 60

    # OIDC / SSO
    entra_authority: str = "https://login.microsoftonline.com"
    oidc_session_ttl_minutes: int = 10
    oidc_landing_path: str = "/dashboard"
    provider_timeout: float = 10.0  # seconds per provider request
    login_code_ttl_minutes: int = 5

    # Background maintenance
    auth_session_sweep_seconds: int = 60
    login_code_purge_minutes: int = 15

    # Rate limiting for the public SSO endpoints
    rate_limit_oidc: str = "30/minute"

    # CORS settings
    cors_origins: str = '["http://localhost:3000", "http://localhost:5173"]'

    # Database migrations
    strict_migrations: bool = True  # Fail startup if migrations fail (False for test environments)


settings = Settings()
