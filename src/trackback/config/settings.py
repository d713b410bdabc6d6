"""Application settings and configuration management."""

from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """Matching engine configuration with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TRACKBACK_",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    database_path: str = Field(
        default="~/.trackback/trackback.db",
        description="SQLite database holding items and matches",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/trackback.log", description="Main log file")

    # Review API server
    api_host: str = Field(default="127.0.0.1", description="Review API bind address")
    api_port: int = Field(default=8080, ge=1, le=65535, description="Review API port")

    # Match lifecycle thresholds (0-100 score scale)
    generation_threshold: int = Field(
        default=60,
        ge=0,
        le=100,
        description="Minimum score for creating a pending match",
    )
    retain_threshold: int = Field(
        default=40,
        ge=0,
        le=100,
        description="Pending matches rescored below this are auto-rejected",
    )
    confirmed_item_status: str = Field(
        default="resolved",
        description="Status applied to both items when a match is confirmed",
    )

    # Signal weights (must sum to 100)
    weight_category: int = Field(default=25, ge=0, le=100)
    weight_location: int = Field(default=20, ge=0, le=100)
    weight_temporal: int = Field(default=20, ge=0, le=100)
    weight_text: int = Field(default=20, ge=0, le=100)
    weight_tags: int = Field(default=15, ge=0, le=100)

    # Location signal
    full_credit_distance_m: float = Field(default=200.0, ge=0.0)
    max_radius_m: float = Field(default=5000.0, gt=0.0)

    # Temporal signal
    temporal_full_credit_days: float = Field(default=1.0, ge=0.0)
    temporal_max_window_days: float = Field(default=14.0, gt=0.0)

    # Candidate generation
    time_bucket_days: int = Field(default=14, ge=1, le=365)
    geo_cell_degrees: float = Field(default=0.05, gt=0.0, le=10.0)
    candidate_cap: int = Field(default=200, ge=1, le=10000)
    min_candidates: int = Field(
        default=5,
        ge=0,
        description="Drop the location constraint when fewer candidates are found",
    )
    scoring_workers: int = Field(default=4, ge=1, le=64)
    scoring_timeout_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="Abandon an item's scoring batch after this long (no limit when unset)",
    )

    # Item store retries
    store_max_retries: int = Field(default=3, ge=0, le=10)
    store_retry_base_delay_seconds: float = Field(default=0.5, ge=0.0, le=60.0)
    store_retry_max_delay_seconds: float = Field(default=10.0, ge=0.0, le=600.0)

    @field_validator("confirmed_item_status")
    @classmethod
    def validate_confirmed_item_status(cls, v: str) -> str:
        """Only 'resolved' and 'matched' are meaningful after a confirmation."""
        v = v.strip().lower()
        if v not in ("resolved", "matched"):
            raise ValueError(f"confirmed_item_status must be 'resolved' or 'matched', got {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("database_path", "log_file")
    @classmethod
    def expand_user_path(cls, v: str) -> str:
        """Expand user home directory in paths."""
        return str(Path(v).expanduser())

    @model_validator(mode="after")
    def validate_scoring(self) -> "Config":
        """Weights must add up to the 0-100 score scale."""
        total = (
            self.weight_category
            + self.weight_location
            + self.weight_temporal
            + self.weight_text
            + self.weight_tags
        )
        if total != 100:
            raise ValueError(f"Signal weights must sum to 100, got {total}")
        if self.retain_threshold > self.generation_threshold:
            raise ValueError("retain_threshold must not exceed generation_threshold")
        if self.max_radius_m <= self.full_credit_distance_m:
            raise ValueError("max_radius_m must be greater than full_credit_distance_m")
        if self.temporal_max_window_days <= self.temporal_full_credit_days:
            raise ValueError(
                "temporal_max_window_days must be greater than temporal_full_credit_days"
            )
        return self


# Global configuration instance
_config: Config | None = None


def get_config() -> Config:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
