"""Pydantic models used across the feedsync configuration flow."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class LogLevel(str, Enum):
    """Console verbosity levels."""

    QUIET = "quiet"
    NORMAL = "normal"
    VERBOSE = "verbose"


class ScheduleType(str, Enum):
    """Scheduler modes for the ``serve`` command."""

    CRON = "cron"
    INTERVAL = "interval"


class ScheduleConfig(BaseModel):
    """When the periodic sync should fire."""

    type: ScheduleType = Field(default=ScheduleType.INTERVAL)
    value: Any = Field(
        default=1800,
        description="Cron expression or interval seconds, depending on type.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        return self


class FetchConfig(BaseModel):
    """Feed retrieval and item-level filtering."""

    concurrency: int = 4
    timeout_ms: int = 20000
    max_article_age_days: int = 0
    max_articles: int = 0
    link_validate: bool = False
    link_timeout_ms: int = 5000
    stale_url_years: int = 4
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36 feedsync"
    )

    @model_validator(mode="after")
    def _validate_limits(self) -> "FetchConfig":
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.max_article_age_days < 0:
            raise ValueError("max_article_age_days must be >= 0")
        if self.max_articles < 0:
            raise ValueError("max_articles must be >= 0")
        return self


class AIConfig(BaseModel):
    """Remote classifier settings."""

    triage: bool = True
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    max_tokens: int = 150
    batch_size: int = 10
    concurrency: int = 5
    summary: bool = True
    summary_max_tokens: int = 180
    timeout_ms: int = 60000
    prompt_path: Path = Field(default=Path("ai-prompt.txt"))

    @field_validator("prompt_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @model_validator(mode="after")
    def _validate_limits(self) -> "AIConfig":
        if self.batch_size < 1:
            raise ValueError("ai.batch_size must be >= 1")
        if self.concurrency < 1:
            raise ValueError("ai.concurrency must be >= 1")
        return self

    @property
    def enabled(self) -> bool:
        return self.triage and bool(self.api_key)


class PublishConfig(BaseModel):
    """Record creation pacing and retry policy."""

    batch_size: int = 20
    request_delay_ms: int = 1000
    max_retries: int = 3
    retry_base_delay_ms: int = 1000
    rate_limit_fallback_s: float = 2.0
    max_rate_limit_waits: int = 20

    @model_validator(mode="after")
    def _validate_limits(self) -> "PublishConfig":
        if self.batch_size < 1:
            raise ValueError("publish.batch_size must be >= 1")
        if self.max_retries < 1:
            raise ValueError("publish.max_retries must be >= 1")
        if self.request_delay_ms < 0:
            raise ValueError("publish.request_delay_ms must be >= 0")
        return self


class RetentionConfig(BaseModel):
    """Remote store size bounds."""

    prune_max_age_days: int = 30
    per_feed_hard_cap: int = 500
    page_size: int = 100


class QualityConfig(BaseModel):
    """Auto-disable thresholds for chronically low-value feeds."""

    auto_disable: bool = True
    threshold: float = 0.1
    min_sample: int = 20

    @field_validator("threshold")
    @classmethod
    def _check_threshold(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("quality.threshold must be between 0 and 1")
        return value


class NotionConfig(BaseModel):
    """Record store credentials and endpoint."""

    token: str = ""
    database_id: str = ""
    base_url: str = "https://api.notion.com/v1"
    version: str = "2022-06-28"
    timeout_ms: int = 30000


class SyncConfig(BaseModel):
    """Top level controls for one sync pass."""

    opml_path: Path | None = None
    state_file: Path = Field(default=Path("data/.rss_seen.json"))
    global_timeout_minutes: float = 30
    log_level: LogLevel = LogLevel.NORMAL
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    notion: NotionConfig = Field(default_factory=NotionConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @field_validator("opml_path", mode="before")
    @classmethod
    def _coerce_opml(cls, value: Any) -> Path | None:
        if value in (None, ""):
            return None
        return Path(value)

    @field_validator("state_file", mode="before")
    @classmethod
    def _coerce_state(cls, value: Any) -> Path:
        if value in (None, ""):
            return Path("data/.rss_seen.json")
        return Path(value)

    @model_validator(mode="after")
    def _validate_timeout(self) -> "SyncConfig":
        if self.global_timeout_minutes <= 0:
            raise ValueError("global_timeout_minutes must be > 0")
        return self

    def resolve(self, base_dir: Path, path: Path) -> Path:
        """Return ``path`` anchored at the project home when relative."""

        if not path.is_absolute():
            return (base_dir / path).resolve()
        return path


__all__ = [
    "AIConfig",
    "FetchConfig",
    "LogLevel",
    "NotionConfig",
    "PublishConfig",
    "QualityConfig",
    "RetentionConfig",
    "ScheduleConfig",
    "ScheduleType",
    "SyncConfig",
]
