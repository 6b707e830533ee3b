"""Exception hierarchy shared by feedsync components."""

from __future__ import annotations


class FeedSyncError(Exception):
    """Base class for errors raised by feedsync."""


class ConfigError(FeedSyncError):
    """Missing or invalid configuration detected before any network activity."""


class NotionAPIError(FeedSyncError):
    """Error response returned by the record store."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.retry_after = retry_after

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429 or self.code == "rate_limited"

    @property
    def is_conflict(self) -> bool:
        return self.code == "conflict_error"


__all__ = ["ConfigError", "FeedSyncError", "NotionAPIError"]
