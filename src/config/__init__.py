"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="grievance-escalation-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/grievances",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Escalation Policy ==========
    escalation_config_path: Path = Field(
        default=Path("escalation_config.yaml"),
        description="Path to escalation policy YAML file"
    )
    business_timezone: str = Field(
        default="Asia/Kolkata",
        description="IANA timezone of the business calendar"
    )

    # ========== Escalation Sweep ==========
    escalation_sweep_enabled: bool = Field(
        default=True,
        description="Run the periodic escalation sweep in this process"
    )
    escalation_sweep_interval_minutes: int = Field(
        default=15,
        description="Minutes between escalation sweeps",
        ge=1
    )
    escalation_initial_delay_seconds: int = Field(
        default=10,
        description="Delay before the first sweep after startup",
        ge=0
    )
    escalation_sweep_workers: int = Field(
        default=4,
        description="Issues processed concurrently within one sweep",
        ge=1,
        le=64
    )
    escalation_rule_cache_seconds: int = Field(
        default=300,
        description="Refresh interval for cached escalation rules",
        ge=0
    )

    # ========== Realtime transport ==========
    realtime_webhook_url: Optional[str] = Field(
        default=None,
        description="Ingress URL of the push transport that fans domain events out to clients"
    )
    realtime_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for realtime webhook calls",
        ge=0.1,
        le=30
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
        allowed = {"development", "staging", "production", "test"}
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

OTHERS_TYPE_ID = "others"
SYSTEM_ACTOR = "system"


class IssueStatus(str):
    """Issue lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Priority(str):
    """Issue priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SLABucket(str):
    """SLA adherence buckets."""
    ON_TIME = "onTime"
    AT_RISK = "atRisk"
    BREACHED = "breached"
    PENDING = "pending"


class AuditAction(str):
    """Audit trail action tags."""
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    ASSIGNED = "assigned"
    MAPPED = "mapped"
    UNMAPPED = "unmapped"
    ESCALATED = "escalated"
    COMMENT_ADDED = "comment_added"
    REOPENED = "reopened"


class TransitionKind(str):
    """Kinds of change produced by the state machine."""
    PRIORITY = "priority"
    STATUS = "status"
    ASSIGNMENT = "assignment"
    MAPPING = "mapping"
    UNMAPPING = "unmapping"
    REOPEN = "reopen"
    ESCALATION = "escalation"


class EventType(str):
    """Domain events emitted to the realtime transport."""
    PRIORITY_CHANGED = "priority_changed"
    ISSUE_ESCALATED = "issue_escalated"
    ISSUE_REOPENED = "issue_reopened"
    ISSUE_ASSIGNED = "issue_assigned"
    STATUS_CHANGED = "status_changed"


# ========== Lists for validation ==========

# Ordered by rank; escalation means moving right in this list.
VALID_PRIORITIES = [
    Priority.LOW, Priority.MEDIUM,
    Priority.HIGH, Priority.CRITICAL
]
VALID_STATUSES = [
    IssueStatus.OPEN, IssueStatus.IN_PROGRESS,
    IssueStatus.RESOLVED, IssueStatus.CLOSED
]
ACTIVE_STATUSES = [IssueStatus.OPEN, IssueStatus.IN_PROGRESS]
TERMINAL_STATUSES = [IssueStatus.RESOLVED, IssueStatus.CLOSED]
VALID_SLA_BUCKETS = [SLABucket.ON_TIME, SLABucket.AT_RISK, SLABucket.BREACHED, SLABucket.PENDING]


def priority_rank(priority: str) -> int:
    """Rank of a priority (low=0 .. critical=3); unknown values rank as high."""
    try:
        return VALID_PRIORITIES.index(priority)
    except ValueError:
        return VALID_PRIORITIES.index(Priority.HIGH)
