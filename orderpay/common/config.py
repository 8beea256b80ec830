"""Central environment-driven settings shared by both services.

Each service process loads this once at startup. Service-specific behavior is
controlled by environment variables or a local `.env` file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "orders"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./orderpay.db"
    redis_url: str = "redis://localhost:6379/0"
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    service_token_ttl_seconds: int = 300
    gateway_url: str = "http://localhost:8002/mock-stripe/charge"
    # Interactive path: one caller is waiting on the response.
    gateway_timeout_seconds: float = 50.0
    gateway_max_attempts: int = 2
    gateway_backoff_seconds: float = 10.0
    # Background retry path.
    retry_gateway_timeout_seconds: float = 5.0
    retry_gateway_max_attempts: int = 3
    retry_gateway_backoff_seconds: float = 0.2
    retry_delay_seconds: int = 300
    retry_poll_interval_seconds: float = 1.0
    retry_claim_timeout_seconds: int = 120
    attempt_lock_ttl_seconds: int = 180
    payment_provider: str = "stripe"
    payment_method: str = "card_visa"
    rate_limit_per_minute: int = 60
    mock_charge_rate_limit_per_minute: int = 10
    auto_create_schema: bool = True
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://localhost:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
