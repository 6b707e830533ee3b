"""Keep the remote store bounded by age and by per-source count."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import structlog

from ..config import RetentionConfig
from ..store.base import RecordStore
from ..store.records import PUBLISHED_DESC, Status, source_equals, status_published_before


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RetentionResult:
    age_archived: int = 0
    cap_archived: int = 0
    failures: int = 0


class RetentionEnforcer:
    """Archive old records and trim every source to a hard cap.

    Matching ids are collected before archiving so that records dropping out
    of the query results do not shift the pagination cursor.
    """

    def __init__(
        self,
        store: RecordStore,
        config: RetentionConfig,
        clock: Callable[[], datetime] = _utcnow,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.clock = clock
        self.logger = logger or structlog.get_logger("feedsync.retention")
        self.failures = 0

    def run(self) -> RetentionResult:
        self.failures = 0
        result = RetentionResult()
        result.age_archived = self.prune_by_age(self.config.prune_max_age_days)
        if self.config.per_feed_hard_cap > 0:
            result.cap_archived = self.enforce_cap(self.config.per_feed_hard_cap)
        result.failures = self.failures
        self.logger.info(
            "retention_completed",
            age_archived=result.age_archived,
            cap_archived=result.cap_archived,
            failures=result.failures,
        )
        return result

    def prune_by_age(self, max_age_days: int) -> int:
        cutoff = self.clock() - timedelta(days=max_age_days)
        archived = 0
        for status in (Status.READ, Status.ARCHIVED):
            ids = self._collect_ids(status_published_before(status, cutoff))
            self.logger.debug("age_sweep", status=status.value, cutoff=cutoff.isoformat(), matches=len(ids))
            archived += self._archive_all(ids, sweep="age")
        return archived

    def enforce_cap(self, hard_cap: int) -> int:
        sources: dict[str, None] = {}
        for page in self.store.iter_pages(sorts=PUBLISHED_DESC, page_size=self.config.page_size):
            for record in page:
                if record.source:
                    sources.setdefault(record.source)

        archived = 0
        for source in sources:
            ids = self._collect_ids(source_equals(source), sorts=PUBLISHED_DESC)
            overflow = ids[hard_cap:]
            if overflow:
                self.logger.info("cap_exceeded", source=source, total=len(ids), archiving=len(overflow))
            archived += self._archive_all(overflow, sweep="cap")
        return archived

    def _collect_ids(
        self,
        filter: dict[str, Any],
        sorts: list[dict[str, str]] | None = None,
    ) -> list[str]:
        ids: list[str] = []
        for page in self.store.iter_pages(filter=filter, sorts=sorts, page_size=self.config.page_size):
            ids.extend(record.id for record in page)
        return ids

    def _archive_all(self, ids: list[str], sweep: str) -> int:
        archived = 0
        for record_id in ids:
            try:
                self.store.archive(record_id)
                archived += 1
            except Exception as exc:  # noqa: BLE001
                self.failures += 1
                self.logger.warning("archive_failed", record_id=record_id, sweep=sweep, error=str(exc))
        return archived


__all__ = ["RetentionEnforcer", "RetentionResult"]
