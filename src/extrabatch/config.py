"""Configuration using pydantic-settings.

Every setting can be overridden with an ``EXTRABATCH_`` prefixed environment
variable (e.g. ``EXTRABATCH_WRITES_PER_MINUTE=30``) or a ``.env`` file.
Defaults match the Sheets API per-user quotas and the built-in policy.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from extrabatch.diff_engine import DiffTier
from extrabatch.logging import configure_logging
from extrabatch.policy import PolicyConfig
from extrabatch.rate_limiter import RateLimiter
from extrabatch.snapshot import DriveSnapshotService
from extrabatch.transport import GoogleSheetsTransport

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="EXTRABATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    # Transport
    request_timeout: int = 60

    # Rate limits (per minute)
    reads_per_minute: int = 300
    writes_per_minute: int = 60

    # Policy
    max_cells_per_operation: int = 50_000
    max_rows_per_delete: int = 10_000
    max_columns_per_delete: int = 100
    require_explicit_range_for_delete: bool = True
    allow_batch_destructive: bool = False
    max_intents_per_batch: int = 100

    # Diff
    default_diff_tier: str = "SAMPLE"
    sample_size: int = 10
    max_full_diff_cells: int = 5000
    block_size: int = 1000
    sample_threshold: int = 100
    full_threshold: int = 5000
    diff_concurrency: int = 10

    # Snapshots
    snapshot_folder_id: str = ""

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("default_diff_tier")
    @classmethod
    def validate_diff_tier(cls, value: str) -> str:
        tier = value.upper()
        if tier not in DiffTier.__members__:
            raise ValueError(f"Unknown diff tier: {value}")
        return tier

    @field_validator(
        "request_timeout",
        "reads_per_minute",
        "writes_per_minute",
        "max_cells_per_operation",
        "max_rows_per_delete",
        "max_columns_per_delete",
        "max_intents_per_batch",
        "sample_size",
        "max_full_diff_cells",
        "block_size",
        "diff_concurrency",
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def validate_thresholds(self) -> Settings:
        if self.sample_threshold > self.full_threshold:
            raise ValueError("sample_threshold must not exceed full_threshold")
        return self

    def policy_config(self) -> PolicyConfig:
        return PolicyConfig(
            max_cells_per_operation=self.max_cells_per_operation,
            max_rows_per_delete=self.max_rows_per_delete,
            max_columns_per_delete=self.max_columns_per_delete,
            require_explicit_range_for_delete=self.require_explicit_range_for_delete,
            allow_batch_destructive=self.allow_batch_destructive,
            max_intents_per_batch=self.max_intents_per_batch,
        )

    def rate_limiter(self) -> RateLimiter:
        return RateLimiter(
            reads_per_minute=self.reads_per_minute,
            writes_per_minute=self.writes_per_minute,
        )

    def diff_engine_options(self) -> dict[str, Any]:
        """Keyword arguments for DiffEngine (everything except the fetcher)."""
        return {
            "default_tier": DiffTier[self.default_diff_tier],
            "sample_size": self.sample_size,
            "max_full_diff_cells": self.max_full_diff_cells,
            "block_size": self.block_size,
            "sample_threshold": self.sample_threshold,
            "full_threshold": self.full_threshold,
            "concurrency": self.diff_concurrency,
        }

    def transport(self, access_token: str) -> GoogleSheetsTransport:
        return GoogleSheetsTransport(access_token, timeout=self.request_timeout)

    def snapshot_service(self, access_token: str) -> DriveSnapshotService:
        """Drive snapshots, copied into ``snapshot_folder_id`` when it is set."""
        return DriveSnapshotService(
            access_token,
            folder_id=self.snapshot_folder_id or None,
            timeout=self.request_timeout,
        )

    def configure_logging(self) -> None:
        configure_logging(json_output=self.json_logs, log_level=self.log_level)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
