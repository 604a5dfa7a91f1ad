from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    enable_openapi_docs: bool = Field(default=True, alias="ENABLE_OPENAPI_DOCS")

    internal_api_token: str = Field(
        default="dev_internal_token_change_me",
        alias="INTERNAL_API_TOKEN",
    )
    internal_api_allowlist: str = Field(
        default="127.0.0.1/32,::1/128",
        alias="INTERNAL_API_ALLOWLIST",
    )
    internal_api_trusted_proxies: str = Field(default="", alias="INTERNAL_API_TRUSTED_PROXIES")

    database_url: str = Field(alias="DATABASE_URL")
    redis_url: str = Field(alias="REDIS_URL")

    celery_broker_url: str = Field(alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(alias="CELERY_RESULT_BACKEND")

    stripe_secret_key: SecretStr = Field(default=SecretStr(""), alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: SecretStr = Field(default=SecretStr(""), alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance_seconds: int = Field(
        default=300,
        ge=1,
        alias="STRIPE_WEBHOOK_TOLERANCE_SECONDS",
    )
    stripe_api_timeout_seconds: float = Field(default=10.0, gt=0, alias="STRIPE_API_TIMEOUT_SECONDS")
    stripe_max_network_retries: int = Field(default=2, ge=0, alias="STRIPE_MAX_NETWORK_RETRIES")
    checkout_success_url: str = Field(
        default="http://localhost:3000/bulk-subscriptions/success?session_id={CHECKOUT_SESSION_ID}",
        alias="CHECKOUT_SUCCESS_URL",
    )
    checkout_cancel_url: str = Field(
        default="http://localhost:3000/bulk-subscriptions/cancel",
        alias="CHECKOUT_CANCEL_URL",
    )
    portal_return_url: str = Field(
        default="http://localhost:3000/bulk-subscriptions",
        alias="PORTAL_RETURN_URL",
    )

    code_redemption_window_days: int = Field(default=365, ge=1, alias="CODE_REDEMPTION_WINDOW_DAYS")
    webhook_seen_cache_size: int = Field(default=10_000, ge=1, alias="WEBHOOK_SEEN_CACHE_SIZE")

    ops_alert_webhook_url: str = Field(default="", alias="OPS_ALERT_WEBHOOK_URL")
    ops_alert_slack_webhook_url: str = Field(default="", alias="OPS_ALERT_SLACK_WEBHOOK_URL")
    ops_alert_pagerduty_routing_key: str = Field(default="", alias="OPS_ALERT_PAGERDUTY_ROUTING_KEY")
    ops_alert_pagerduty_events_url: str = Field(default="", alias="OPS_ALERT_PAGERDUTY_EVENTS_URL")
    ops_alert_escalation_policy_json: str = Field(
        default="",
        alias="OPS_ALERT_ESCALATION_POLICY_JSON",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
