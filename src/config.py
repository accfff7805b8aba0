"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings

from src.errors import ConfigurationError


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Secrets default to empty so the app can be imported without them; code
    that needs one calls ``require()`` at the point of use.
    """

    # --- App ---
    app_name: str = "Healthlog"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production
    timezone: str = "UTC"  # IANA zone used to compute "today" for cron jobs
    app_url: str = ""  # base URL for post-OAuth redirects; request origin if empty

    # --- Supabase ---
    supabase_url: str = ""
    supabase_service_role_key: str = ""  # server-side only — never expose to client
    supabase_db_url: str = ""  # direct postgres connection string for asyncpg
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_command_timeout: float = 30.0

    # --- Session auth ---
    app_password: str = ""
    app_user_id: str = ""  # identity minted into the session cookie on login
    session_secret: str = ""
    session_cookie_name: str = "auth_session"
    session_max_age_seconds: int = 60 * 60 * 24 * 30  # 30 days
    cron_secret: str = ""

    # --- Whoop OAuth / API ---
    whoop_client_id: str = ""
    whoop_client_secret: str = ""
    whoop_redirect_uri: str = ""
    whoop_api_base: str = "https://api.prod.whoop.com/developer"
    whoop_auth_url: str = "https://api.prod.whoop.com/oauth/oauth2/auth"
    whoop_token_url: str = "https://api.prod.whoop.com/oauth/oauth2/token"
    whoop_scopes: str = "read:recovery read:cycles read:sleep read:workout read:profile offline"
    whoop_timeout_seconds: float = 15.0
    whoop_page_limit: int = 25
    whoop_token_skew_seconds: int = 300  # refresh this long before real expiry
    whoop_oauth_state_ttl_seconds: int = 600
    whoop_default_sync_days: int = 7
    whoop_default_workout_days: int = 30
    whoop_cron_sync_days: int = 2

    # --- Limits ---
    max_range_days: int = 366
    login_rate_limit_per_minute: int = 10

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()


def require(settings: Settings, name: str) -> str:
    """Return a required setting or raise ``ConfigurationError``."""
    value = getattr(settings, name, "")
    if not value:
        raise ConfigurationError(f"Required setting not configured: {name.upper()}")
    return value
