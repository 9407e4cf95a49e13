"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="breachwatch", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/breachwatch",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Escalation ==========
    escalation_config_path: Path = Field(
        default=Path("escalation_config.yaml"),
        description="Path to escalation policy / SLA allowance YAML file"
    )
    escalation_tick_interval: int = Field(
        default=60,
        description="Seconds between escalation timer evaluations",
        ge=0
    )
    sla_scan_interval: int = Field(
        default=300,
        description="Seconds between SLA deadline scans",
        ge=0
    )
    default_repeat_interval_minutes: Optional[int] = Field(
        default=60,
        description="Re-notify interval at the last escalation level (None disables)",
        ge=0
    )
    notification_delivery_interval: int = Field(
        default=60,
        description="Seconds between breach notification delivery runs",
        ge=0
    )
    scheduler_enabled: bool = Field(
        default=True,
        description="Run the escalation tick and SLA scan in-process"
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook that relays email/SMS notifications"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )
    notification_max_retries: int = Field(
        default=3,
        description="Delivery attempts per notification",
        ge=1,
        le=10
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class VarianceStatus(str, Enum):
    """Classification of a reading against its tolerance band."""
    WITHIN_APPETITE = "within_appetite"
    WARNING = "warning"
    BREACH = "breach"


class BreachType(str, Enum):
    """Breach notification types."""
    WARNING = "warning"
    BREACH = "breach"
    CRITICAL = "critical"


class ReadingTrigger(str, Enum):
    """What caused a variance record to be computed."""
    INGESTION = "ingestion"
    BAND_CHANGE = "band_change"


class ExecutionStatus(str, Enum):
    """Escalation execution lifecycle."""
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class AlertSource(str, Enum):
    """Where an escalated alert came from."""
    BREACH = "breach"
    SLA = "sla"


class IncidentStatus(str, Enum):
    """Incident lifecycle statuses."""
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    CLOSED = "closed"


class IncidentSeverity(str, Enum):
    """Incident severity levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ========== Lists for validation ==========

OPEN_INCIDENT_STATUSES = [IncidentStatus.OPEN, IncidentStatus.INVESTIGATING]
TERMINAL_EXECUTION_STATUSES = [ExecutionStatus.RESOLVED, ExecutionStatus.CANCELLED]
