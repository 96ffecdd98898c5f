"""
Configuration management for Gradeflow.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are validated at startup. Missing required fields
    will raise clear validation errors.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Judgment Service Configuration
    # ==========================================================================
    judge_api_key: str = Field(
        ...,
        description="API key for the OpenAI-compatible judgment endpoint",
        min_length=10,
    )

    judge_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for the judgment API",
    )

    judge_model: str = Field(
        default="gpt-4o-mini",
        description="Model used to score free-form answers",
    )

    llm_temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Temperature for LLM generation (0.0 = deterministic)",
    )

    judge_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for rate-limited or unreachable judgment calls",
    )

    # ==========================================================================
    # Consistency Engine Configuration
    # ==========================================================================
    similarity_threshold: float = Field(
        default=0.85,
        gt=0.0,
        le=1.0,
        description="Minimum similarity for two free-text answers to count as alike",
    )

    jaccard_length_threshold: int = Field(
        default=500,
        ge=1,
        description="Answers longer than this use token-set similarity instead of edit distance",
    )

    deviation_threshold_percent: float = Field(
        default=15.0,
        ge=0.0,
        le=100.0,
        description="Score deviation between similar answers that triggers a correction suggestion",
    )

    cache_max_records_per_question: int = Field(
        default=100,
        ge=1,
        description="Grading records kept in memory per question",
    )

    cache_max_keys: int = Field(
        default=1000,
        ge=1,
        description="Question keys kept in the in-memory grading cache",
    )

    cache_record_ttl_hours: float = Field(
        default=24.0,
        gt=0.0,
        description="Age after which cached grading records are swept",
    )

    cache_sweep_interval_seconds: float = Field(
        default=3600.0,
        gt=0.0,
        description="Interval of the periodic cache sweep",
    )

    consistency_lookback_days: int = Field(
        default=7,
        ge=1,
        description="How far back the audit store is searched for similar answers",
    )

    consistency_lookup_limit: int = Field(
        default=50,
        ge=1,
        description="Audit rows sampled per consistency lookup",
    )

    apply_consistency_corrections: bool = Field(
        default=False,
        description="Replace the score with the previous grade when deviation is too high",
    )

    # ==========================================================================
    # Audit Configuration
    # ==========================================================================
    audit_statistics_window: int = Field(
        default=100,
        ge=1,
        description="Most recent audit rows used for per-question statistics",
    )

    audit_issue_min_samples: int = Field(
        default=10,
        ge=1,
        description="Rows required before grading issues are reported",
    )

    excessive_zero_ratio: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Share of zero scores flagged as excessive",
    )

    excessive_max_ratio: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Share of maximum scores flagged as excessive",
    )

    usage_lookback_days: int = Field(
        default=7,
        ge=1,
        description="Window for the per-day usage breakdown",
    )

    # ==========================================================================
    # Job Status Stream Configuration
    # ==========================================================================
    heartbeat_interval_seconds: float = Field(default=10.0, gt=0.0)
    heartbeat_idle_seconds: float = Field(default=15.0, gt=0.0)
    poll_min_delay_seconds: float = Field(default=2.0, gt=0.0)
    poll_max_delay_seconds: float = Field(default=15.0, gt=0.0)
    max_consecutive_poll_errors: int = Field(default=10, ge=1)
    finalize_grace_seconds: float = Field(default=0.5, ge=0.0)
    channel_cleanup_delay_seconds: float = Field(default=1.0, ge=0.0)
    job_update_max_retries: int = Field(default=3, ge=1)
    job_update_retry_base_seconds: float = Field(default=0.1, ge=0.0)
    progress_message_max_length: int = Field(default=255, ge=1)

    # ==========================================================================
    # Content Configuration
    # ==========================================================================
    url_fetch_timeout_seconds: float = Field(
        default=15.0,
        gt=0.0,
        description="Timeout for fetching learner URLs",
    )

    max_url_content_chars: int = Field(
        default=100_000,
        ge=1,
        description="Characters of fetched URL content passed to the judge",
    )

    max_file_size_mb: float = Field(
        default=10.0,
        ge=0.1,
        le=100.0,
        description="Maximum allowed file size in megabytes",
    )

    max_image_size_mb: float = Field(
        default=20.0,
        gt=0.0,
        description="Maximum base64 image payload in megabytes",
    )

    file_storage_root: Path = Field(
        default=Path("./storage"),
        description="Local object storage laid out as <bucket>/<key>",
    )

    file_storage_base_url: str | None = Field(
        default=None,
        description="HTTP object storage endpoint; files resolve to <url>/<bucket>/<key>",
    )

    # ==========================================================================
    # Persistence and Logging
    # ==========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./gradeflow.db",
        description="Async SQLAlchemy database URL",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root log level",
    )

    log_json: bool = Field(
        default=False,
        description="Emit JSON log lines instead of the pretty format",
    )

    @field_validator("judge_base_url", "file_storage_base_url")
    @classmethod
    def validate_base_url(cls, v: str | None) -> str | None:
        """Ensure base URLs don't have a trailing slash."""
        return v.rstrip("/") if v else v

    @model_validator(mode="after")
    def validate_poll_bounds(self) -> "Settings":
        """Ensure the poll floor does not exceed the poll ceiling."""
        if self.poll_min_delay_seconds > self.poll_max_delay_seconds:
            raise ValueError(
                f"poll_min_delay_seconds ({self.poll_min_delay_seconds}) exceeds "
                f"poll_max_delay_seconds ({self.poll_max_delay_seconds})"
            )
        return self


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
