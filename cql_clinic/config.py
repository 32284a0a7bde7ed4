"""
Configuration settings for the CQL Code Clinic exercise engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CQL_CLINIC_",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Exercise Source
    # ========================================
    exercise_source: Literal["bundled", "directory", "http"] = Field(
        default="bundled",
        description="Where raw exercises are fetched from",
    )
    exercise_dir: str = Field(
        default="data/exercises",
        description="Directory of *.json exercise files (source=directory)",
    )
    exercise_api_url: str = Field(
        default="http://localhost:3001/api",
        description="Base URL of the exercise API (source=http)",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for exercise API requests",
    )

    # ========================================
    # Caching
    # ========================================
    cache_ttl_seconds: float = Field(
        default=300.0,
        description="Time-to-live for cached exercise snapshots and search results",
    )

    # ========================================
    # Scoring & Analytics Defaults
    # ========================================
    recommendation_limit: int = Field(
        default=5,
        description="Number of recommendations returned when no limit is given",
    )
    default_estimated_time: int = Field(
        default=15,
        description="Minutes assumed for exercises without estimatedTime (analytics only)",
    )
    recent_days: int = Field(
        default=7,
        description="Window for the 'recently added' analytics counter",
    )

    # ========================================
    # CQL Execution Sandbox
    # ========================================
    cql_service_url: str = Field(
        default="https://cql-sandbox.alphora.com/cqf-ruler-r4/fhir",
        description="Base URL of the CQL execution service",
    )
    cql_request_timeout_ms: int = Field(
        default=30000,
        description="Request timeout for CQL execution (milliseconds)",
    )
    cql_retry_attempts: int = Field(
        default=3,
        description="Retry attempts for CQL execution on transient failures",
    )
    cql_patient_id: str = Field(
        default="example-patient-id",
        description="Patient context used when executing CQL",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: str = Field(
        default="WARNING",
        description="Loguru level for the CLI sink",
    )

    def get_cache_config(self) -> dict[str, Any]:
        """Get cache configuration as a dictionary."""
        return {
            "ttl_seconds": self.cache_ttl_seconds,
            "namespaces": ["exercises", "search"],
        }

    def get_sandbox_config(self) -> dict[str, Any]:
        """Get CQL sandbox client configuration as a dictionary."""
        return {
            "api_url": self.cql_service_url,
            "timeout_ms": self.cql_request_timeout_ms,
            "retry_attempts": self.cql_retry_attempts,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
