"""Application configuration with environment variables."""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "1.00.00"
    LOG_LEVEL: str = "INFO"

    # HTTP server
    HTTP_ADDR: str = "0.0.0.0:8080"
    TLS_CERT: str = ""
    TLS_KEY: str = ""
    REQUEST_TIMEOUT_SEC: float = 15.0
    SHUTDOWN_DRAIN_SEC: float = 30.0

    # Database
    DB_URL: str
    DB_STATEMENT_TIMEOUT_MS: int = 5000
    AUTO_MIGRATE: bool = True

    # Bearer tokens (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Cancellation policy seed (first active version)
    FREE_CANCEL_WINDOW_SEC: int = Field(30, ge=0, le=300)
    PENALTY_RATE: float = Field(0.40, ge=0.0, le=1.0)
    MIN_PENALTY: float = Field(20.0, ge=0.0)
    MAX_PENALTY: float = Field(500.0, ge=0.0)

    # Pricing applied at placement
    DELIVERY_FEE: float = Field(50.0, ge=0.0)
    TAX_RATE: float = Field(0.05, ge=0.0, le=1.0)

    # Order lifecycle timing
    CHEF_RESPONSE_WINDOW_SEC: int = 900
    TIP_WINDOW_AFTER_DELIVERY_HOURS: int = 24
    COUNTDOWN_TICK_SEC: float = 1.0

    # Webhook delivery
    WEBHOOK_MAX_RETRIES: int = Field(5, ge=1, le=10)
    WEBHOOK_BASE_DELAY_SEC: int = Field(30, ge=1)
    WEBHOOK_MAX_DELAY_SEC: int = 3600
    WEBHOOK_TIMEOUT_SEC: float = 10.0
    WEBHOOK_WORKERS: int = Field(4, ge=1)
    WEBHOOK_SWEEP_INTERVAL_SEC: float = 30.0
    WEBHOOK_SWEEP_BATCH: int = 100
    WEBHOOK_LOG_RETENTION_DAYS: int = 30
    WEBHOOK_BLOCK_PRIVATE_IPS: bool = False
    WEBHOOK_SECRET_KEY: str = ""  # Fernet key for endpoint secrets at rest

    # Payment collaborator callbacks (HMAC signed)
    PAYMENT_CALLBACK_SECRET: str = ""

    # WebSocket hub
    WS_SEND_BUFFER: int = 256
    WS_PING_INTERVAL_SEC: float = 54.0
    WS_READ_TIMEOUT_SEC: float = 60.0

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_API: int = 60

    @model_validator(mode="after")
    def _check_pairs(self) -> "Settings":
        if bool(self.TLS_CERT) != bool(self.TLS_KEY):
            raise ValueError("TLS_CERT and TLS_KEY must be set together")
        if self.MIN_PENALTY > self.MAX_PENALTY:
            raise ValueError("MIN_PENALTY must not exceed MAX_PENALTY")
        self._split_addr()
        return self

    @property
    def http_host(self) -> str:
        host, _, _ = self._split_addr()
        return host

    @property
    def http_port(self) -> int:
        _, port, _ = self._split_addr()
        return port

    def _split_addr(self) -> tuple[str, int, str]:
        host, sep, port = self.HTTP_ADDR.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"HTTP_ADDR must be host:port, got {self.HTTP_ADDR!r}")
        return host or "0.0.0.0", int(port), self.HTTP_ADDR

    @property
    def tls_enabled(self) -> bool:
        return bool(self.TLS_CERT and self.TLS_KEY)

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def webhook_claim_ttl_sec(self) -> float:
        """Claims older than this are considered abandoned by a crashed worker."""
        return self.WEBHOOK_TIMEOUT_SEC * 2


settings = Settings()
