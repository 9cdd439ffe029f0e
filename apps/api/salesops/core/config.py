"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.04.00"

    # Database
    DATABASE_URL: str

    # Bearer tokens for admin routes (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Token Encryption (CRM access/refresh tokens at rest)
    TOKEN_ENCRYPTION_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # GoHighLevel / LeadConnector
    GHL_CLIENT_ID: str = ""
    GHL_CLIENT_SECRET: str = ""
    GHL_API_BASE_URL: str = "https://services.leadconnectorhq.com"
    GHL_API_VERSION: str = "2021-07-28"
    GHL_EXPORT_API_VERSION: str = "2021-04-15"
    GHL_TOKEN_REFRESH_SKEW_SECONDS: int = 120

    # Inbound webhooks
    WEBHOOK_SIGNATURE_MODE: str = "rsa"  # rsa | none (none is dev/test only)
    GHL_WEBHOOK_PUBLIC_KEY: str = ""  # PEM
    WEBHOOK_REPLAY_BACKEND: str = "memory"  # memory | redis
    WEBHOOK_REPLAY_CAPACITY: int = 1000
    WEBHOOK_REPLAY_TTL_SECONDS: int = 86400
    WEBHOOK_MAX_AGE_SECONDS: int = 300
    WEBHOOK_MAX_PAYLOAD_BYTES: int = 1024 * 1024

    # Dial thresholds and linking windows
    DIAL_ANSWERED_SECONDS: int = 30
    DIAL_MEANINGFUL_SECONDS: int = 120
    DIAL_APPOINTMENT_WINDOW_MINUTES: int = 30
    APPOINTMENT_DIAL_LOOKBACK_HOURS: int = 48
    APPOINTMENT_DIAL_LOOKAHEAD_HOURS: int = 2
    DISCOVERY_LINK_WINDOW_MINUTES: int = 60

    # Backfill
    BACKFILL_DEFAULT_BATCH_SIZE: int = 50
    BACKFILL_MAX_BATCH_SIZE: int = 200
    BACKFILL_EXPORT_PAGE_LIMIT: int = 500

    # Attribution beacon bounds
    ATTRIBUTION_MAX_FIELD_LENGTH: int = 500
    ATTRIBUTION_MAX_URL_LENGTH: int = 2048

    # Rate limits (requests per minute, 0 disables)
    RATE_LIMIT_API: int = 300
    RATE_LIMIT_ATTRIBUTION: int = 60

    # Monitoring
    SENTRY_DSN: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Secrets accepted when decoding bearer tokens (current first)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def ghl_oauth_configured(self) -> bool:
        return bool(self.GHL_CLIENT_ID and self.GHL_CLIENT_SECRET)


settings = Settings()
