"""
Configuration module for the OR Scheduling Agent.

Manages environment variables and default settings for:
- Service identification and API server
- Operating day window and turnover padding
- Constraint scoring penalties
- Priority queue escalation thresholds
- Static tables used by the heuristic predictors

All values can be overridden through environment variables (or a ``.env``
file), e.g. ``DAY_END_HOUR=21`` or ``ENFORCE_ROLES=true``.
"""

from functools import lru_cache
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Grouped by the part of the scheduling workflow they control.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # SERVICE IDENTIFICATION
    # ==========================================================================
    service_name: str = Field(
        default="or-scheduling-agent",
        description="Unique identifier for this microservice"
    )
    service_version: str = Field(
        default="1.0.0",
        description="Semantic version of this agent"
    )
    environment: str = Field(
        default="development",
        description="Runtime environment (development, staging, production)"
    )

    # ==========================================================================
    # OPERATING DAY
    # ==========================================================================
    day_start_hour: int = Field(
        default=7,
        ge=0,
        le=23,
        description="Hour at which the allocator starts placing cases"
    )
    day_end_hour: int = Field(
        default=20,
        ge=1,
        le=24,
        description="Hour by which every placed case (with cleanup) must end"
    )
    regular_hours_end_hour: int = Field(
        default=18,
        ge=0,
        le=23,
        description="Cases ending at or after this hour count as overtime"
    )
    early_start_hour: int = Field(
        default=7,
        ge=0,
        le=23,
        description="Cases starting before this hour are flagged as early"
    )
    setup_minutes: int = Field(
        default=15,
        ge=1,
        description="Room setup time placed before every case"
    )
    cleanup_minutes: int = Field(
        default=15,
        ge=1,
        description="Room cleanup time placed after every case"
    )

    # ==========================================================================
    # CONSTRAINT ENGINE
    # ==========================================================================
    hard_violation_penalty: int = Field(
        default=25,
        description="Score deducted per hard constraint violation"
    )
    soft_violation_penalty: int = Field(
        default=5,
        description="Score deducted per soft constraint violation"
    )
    idle_gap_threshold_minutes: int = Field(
        default=60,
        description="Preceding idle time above which the room is underutilized"
    )
    default_surgeon_max_hours: int = Field(
        default=12,
        description="Surgeon cap used when a staff record has none"
    )

    # ==========================================================================
    # PRIORITY QUEUE
    # ==========================================================================
    elective_escalation_hours: int = Field(
        default=72,
        description="Elective requests waiting longer than this are escalated"
    )
    urgent_escalation_hours: int = Field(
        default=48,
        description="Urgent requests waiting longer than this are escalated"
    )

    # ==========================================================================
    # ORCHESTRATOR / REPOSITORY
    # ==========================================================================
    repository_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound on any single repository call"
    )
    enforce_roles: bool = Field(
        default=False,
        description="Check caller roles through the RoleAuthorizer"
    )
    default_facility_id: str = Field(
        default="demo-hospital",
        description="Facility served by this agent instance"
    )
    seed_demo_data: bool = Field(
        default=True,
        description="Load the demo facility into the in-memory repository on startup"
    )

    # ==========================================================================
    # API CONFIGURATION
    # ==========================================================================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8003, description="API server port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # ==========================================================================
    # LOGGING CONFIGURATION
    # ==========================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_format: str = Field(
        default="text",
        description="Log format (json, text)"
    )


@lru_cache()
def get_settings() -> Settings:
    """Return a cached Settings instance (environment is parsed once)."""
    return Settings()


settings = get_settings()


# Sequencing weight per priority tier
PRIORITY_WEIGHTS: Dict[str, int] = {
    "emergency": 1000,
    "urgent": 500,
    "elective": 100,
}

# Expected maintenance interval (days) and risk multiplier per equipment type
EQUIPMENT_PROFILES: Dict[str, Dict[str, float]] = {
    "cardiac": {"maintenance_interval_days": 60, "risk_multiplier": 1.2},
    "neuro": {"maintenance_interval_days": 60, "risk_multiplier": 1.15},
    "anesthesia": {"maintenance_interval_days": 90, "risk_multiplier": 1.1},
    "imaging": {"maintenance_interval_days": 120, "risk_multiplier": 1.05},
    "instruments": {"maintenance_interval_days": 90, "risk_multiplier": 1.0},
}

DEFAULT_EQUIPMENT_PROFILE: Dict[str, float] = {
    "maintenance_interval_days": 90,
    "risk_multiplier": 1.0,
}
