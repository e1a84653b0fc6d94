"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field, field_validator
from typing import Optional, List


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "RFQ Dispatch Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_USER: str = "rfqdispatch"
    POSTGRES_PASSWORD: str = "rfqdispatch"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "rfqdispatch"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    # =========================================
    # Schema capability gate
    # =========================================

    # Master switch for schema-gated features. When false every gated
    # feature reports "not capable" without touching the database.
    SCHEMA_GATE_ENABLED: bool = True

    # =========================================
    # Dispatch SLA thresholds (hours)
    # =========================================

    DESTINATION_QUEUED_MAX_HOURS: float = 4.0
    DESTINATION_SENT_NO_REPLY_MAX_HOURS: float = 48.0
    THREAD_REPLY_SLA_HOURS: float = 24.0

    # Ops event listing
    OPS_EVENTS_DEFAULT_LIMIT: int = 20

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        # Access individual fields from the values dict
        data = info.data
        user = data.get("POSTGRES_USER", "rfqdispatch")
        password = data.get("POSTGRES_PASSWORD", "rfqdispatch")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "rfqdispatch")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator(
        'DESTINATION_QUEUED_MAX_HOURS',
        'DESTINATION_SENT_NO_REPLY_MAX_HOURS',
        'THREAD_REPLY_SLA_HOURS',
    )
    @classmethod
    def validate_sla_hours(cls, v: float) -> float:
        """SLA windows must be positive."""
        if v <= 0:
            raise ValueError("SLA thresholds must be positive hour counts")
        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown LOG_LEVEL: {v}")
        return level

    @field_validator('OPS_EVENTS_DEFAULT_LIMIT')
    @classmethod
    def validate_events_limit(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError("OPS_EVENTS_DEFAULT_LIMIT must be between 1 and 100")
        return v


settings = Settings()
