"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository, require_store_settings, require_sync_settings
from .models import (
    AIConfig,
    FetchConfig,
    LogLevel,
    NotionConfig,
    PublishConfig,
    QualityConfig,
    RetentionConfig,
    ScheduleConfig,
    ScheduleType,
    SyncConfig,
)

__all__ = [
    "AIConfig",
    "ConfigLocator",
    "ConfigRepository",
    "FetchConfig",
    "LogLevel",
    "NotionConfig",
    "PublishConfig",
    "QualityConfig",
    "RetentionConfig",
    "ScheduleConfig",
    "ScheduleType",
    "SyncConfig",
    "require_store_settings",
    "require_sync_settings",
]
