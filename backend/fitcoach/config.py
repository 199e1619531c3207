# fitcoach/config.py
import os
from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Settings(BaseModel):
    # General app settings
    APP_NAME: str = "Fitcoach API"
    env: str = os.getenv("ENV", "dev")
    api_prefix: str = "/api/v1"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Host & Port settings
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))

    # CORS origins for frontend
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Token settings
    # No default: a missing secret is a fatal misconfiguration, surfaced on every mint/verify
    server_secret: str | None = os.getenv("JWT_SECRET") or None
    token_ttl_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
    jwt_algorithm: str = "HS256"

    # Booking policy
    slot_capacity: int = int(os.getenv("SLOT_CAPACITY", "6"))
    booking_start_hour: int = int(os.getenv("BOOKING_START_HOUR", "5"))
    booking_end_hour: int = int(os.getenv("BOOKING_END_HOUR", "13"))  # exclusive
    booking_timezone: str = os.getenv("BOOKING_TIMEZONE", "UTC")

    # Account lockout
    lockout_threshold: int = int(os.getenv("LOCKOUT_THRESHOLD", "5"))
    lockout_duration_minutes: int = int(os.getenv("LOCKOUT_DURATION_MINUTES", "120"))
    multiple_failed_threshold: int = int(os.getenv("MULTIPLE_FAILED_THRESHOLD", "3"))

    # Audit sink
    alert_webhook_url: str | None = os.getenv("ALERT_WEBHOOK_URL") or None
    audit_persist: bool = _env_bool("AUDIT_PERSIST", "true")

    @property
    def is_dev(self) -> bool:
        return self.env.lower() in ("dev", "development", "test")


settings = Settings()  # Instantiate configuration
