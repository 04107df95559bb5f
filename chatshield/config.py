"""Centralized configuration via pydantic-settings.

All limits, model names, PII detection knobs and transport settings live
here. Override any value via environment variable (e.g.,
``PII_MAX_BATCH_CHARS=400``).
"""

from functools import lru_cache

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings

from chatshield.pii.types import KNOWN_PII_TYPES


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Google API ---
    GOOGLE_API_KEY: SecretStr = SecretStr("")  # langchain auto-detects from env when empty

    # --- LLM (chat completions) ---
    MODEL_NAME: str = "gemini-2.5-flash"
    MODEL_TEMPERATURE: float = 0.3
    MODEL_TIMEOUT: int = 30  # provider call timeout in seconds
    MODEL_MAX_RETRIES: int = 2
    MODEL_MAX_OUTPUT_TOKENS: int = 2048

    # --- PII detection ---
    PII_DETECTION_ENABLED: bool = True
    PII_AI_DETECTION_ENABLED: bool = True  # False = regex layer only
    PII_DETECTION_MODEL: str = "gemini-2.5-flash-lite"
    PII_DETECTION_TIMEOUT_SECONDS: float = 5.0
    PII_DETECTION_MAX_TOKENS: int = 2000
    PII_MAX_BATCH_CHARS: int = 500
    PII_TYPES: list[str] = [
        "email", "phone", "ssn", "credit_card", "ip", "name", "address",
    ]
    PII_PERSISTENCE_MODE: str = "detections"  # "detections" | "inline_tags"
    PII_MASK_CHAR: str = "•"
    PII_CB_FAILURE_THRESHOLD: int = 5  # detector failures in window before opening
    PII_CB_COOLDOWN_SECONDS: int = 60
    PII_CB_ROLLING_WINDOW_SECONDS: int = 300

    # --- Chat limits ---
    MAX_MESSAGE_LENGTH: int = 4000
    MAX_MESSAGES_PER_CONVERSATION: int = 200
    CONTEXT_WINDOW_SIZE: int = 20  # last N messages sent to the provider
    RATE_LIMIT_PER_MINUTE: int = 10  # per user
    RATE_LIMIT_SWEEP_SECONDS: int = 60
    DAILY_TOKEN_LIMIT: int = 50_000

    # --- API ---
    API_KEY: SecretStr = SecretStr("")  # When set, requests require X-API-Key header
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]
    STREAM_TIMEOUT_SECONDS: int = 120
    MAX_REQUEST_BODY_SIZE: int = 65536  # 64 KB

    # --- Observability ---
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    VERSION: str = "0.1.0"

    model_config = {"env_prefix": "", "case_sensitive": True}

    @model_validator(mode="after")
    def validate_pii_types(self) -> "Settings":
        """Reject PII types the detectors do not know about."""
        unknown = [t for t in self.PII_TYPES if t not in KNOWN_PII_TYPES]
        if unknown:
            raise ValueError(
                f"PII_TYPES contains unknown types {unknown}; "
                f"allowed: {sorted(KNOWN_PII_TYPES)}"
            )
        return self

    @model_validator(mode="after")
    def validate_pii_batching(self) -> "Settings":
        """Batch size and persistence mode must be usable."""
        if self.PII_MAX_BATCH_CHARS < 1:
            raise ValueError(
                f"PII_MAX_BATCH_CHARS ({self.PII_MAX_BATCH_CHARS}) must be at least 1"
            )
        if self.PII_PERSISTENCE_MODE not in ("detections", "inline_tags"):
            raise ValueError(
                f"PII_PERSISTENCE_MODE must be 'detections' or 'inline_tags', "
                f"got {self.PII_PERSISTENCE_MODE!r}"
            )
        if len(self.PII_MASK_CHAR) != 1:
            raise ValueError("PII_MASK_CHAR must be a single character")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
