from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    supabase_url: str
    supabase_service_role_key: str
    database_url: str | None = None
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = "authenticated"
    payment_webhook_secret: str | None = None
    payment_webhook_secret_previous: str | None = None  # previous signing key during rotation
    payment_webhook_tolerance_seconds: int = 0  # 0 disables the ts age check
    free_signup_leads: int = 5
    signup_ip_window_hours: int = 24
    ip_hash_salt: str = "lead_grants_salt"
    admin_backfill_secret: str | None = None
    backfill_page_size: int = 1000
    auto_fulfill_lookback_hours: int = 72
    leads_per_completed_payment: int = 30
    transaction_page_size: int = 50
    webhook_mirror_scan_limit: int = 200
    allocation_claim_ttl_seconds: int = 120
    allocation_max_attempts: int = 3
    observability_export_url: str | None = None
    observability_export_bearer_token: str | None = None
    observability_export_timeout_seconds: float = 3.0

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
