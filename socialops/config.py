from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    supabase_url: str
    supabase_service_role_key: str
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 60
    database_url: str | None = None
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_price_tiers: dict[str, str] = {}  # price id -> tier
    ayrshare_api_key: str | None = None
    ayrshare_api_base: str = "https://api.ayrshare.com/api"
    ayrshare_webhook_secret: str | None = None
    ayrshare_placeholder_profile_key: str | None = None
    ayrshare_timeout_seconds: float = 30.0
    ayrshare_history_timeout_seconds: float = 15.0
    redis_url: str | None = None
    cache_timeout_seconds: float = 2.0
    history_cache_ttl_seconds: int = 120
    provisioning_max_attempts: int = 3
    provisioning_retry_base_seconds: float = 2.0
    provisioning_stale_after_seconds: int = 300
    ledger_stale_after_seconds: int = 600
    resend_api_key: str | None = None
    alert_from_email: str = "SocialOps Alerts <alerts@socialops.local>"
    admin_alert_emails: str | None = None  # comma-separated
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 60
    observability_export_url: str | None = None
    observability_export_bearer_token: str | None = None
    observability_export_timeout_seconds: float = 3.0

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
