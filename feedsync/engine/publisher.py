"""Sequential record publishing with rate-limit aware retries."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Sequence

import structlog

from ..config import PublishConfig
from ..errors import NotionAPIError
from ..store.base import RecordStore
from ..store.records import NotionRecord
from ..ui.progress import ProgressReporter
from .items import FeedItem


@dataclass(slots=True)
class PublishResult:
    created: int = 0
    failed: int = 0


class PublishPipeline:
    """Create one store record per item, pacing requests and retrying.

    Rate-limit responses wait for the advertised ``retry_after`` and retry
    without consuming an attempt. Conflicts back off exponentially. Anything
    else abandons the item and the pipeline moves on.
    """

    def __init__(
        self,
        store: RecordStore,
        config: PublishConfig,
        logger: structlog.BoundLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        progress: ProgressReporter | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.logger = logger or structlog.get_logger("feedsync.publisher")
        self.sleep = sleep
        self.progress = progress

    def publish(self, items: Sequence[FeedItem]) -> PublishResult:
        result = PublishResult()
        if not items:
            return result
        delay = self.config.request_delay_ms / 1000
        size = self.config.batch_size
        if self.progress is not None:
            self.progress.start(len(items))
        try:
            for offset in range(0, len(items), size):
                batch = items[offset : offset + size]
                self.logger.debug(
                    "publish_batch",
                    batch=offset // size + 1,
                    size=len(batch),
                    total=len(items),
                )
                for item in batch:
                    ok = self.publish_item(item)
                    if ok:
                        result.created += 1
                    else:
                        result.failed += 1
                    if self.progress is not None:
                        self.progress.advance(ok, current=item.title)
                    if delay > 0:
                        self.sleep(delay)
        finally:
            if self.progress is not None:
                self.progress.close()
        self.logger.info("publish_completed", created=result.created, failed=result.failed)
        return result

    def publish_item(self, item: FeedItem) -> bool:
        record = NotionRecord.from_item(item)
        attempt = 1
        waits = 0
        while True:
            try:
                self.store.create(record)
                return True
            except NotionAPIError as exc:
                if exc.is_rate_limited and waits < self.config.max_rate_limit_waits:
                    waits += 1
                    wait_s = exc.retry_after if exc.retry_after is not None else self.config.rate_limit_fallback_s
                    self.logger.warning(
                        "publish_rate_limited",
                        title=item.title,
                        retry_after=wait_s,
                        waits=waits,
                    )
                    self.sleep(wait_s)
                    continue
                if exc.is_conflict and attempt < self.config.max_retries:
                    backoff = self.config.retry_base_delay_ms / 1000 * 2 ** (attempt - 1)
                    self.logger.warning(
                        "publish_conflict_retry",
                        title=item.title,
                        attempt=attempt,
                        backoff=backoff,
                    )
                    attempt += 1
                    self.sleep(backoff)
                    continue
                self._log_failure(item, exc, attempt)
                return False
            except Exception as exc:  # noqa: BLE001
                self._log_failure(item, exc, attempt)
                return False

    def _log_failure(self, item: FeedItem, exc: Exception, attempt: int) -> None:
        self.logger.error(
            "publish_failed",
            title=item.title,
            url=item.canonical_url,
            attempt=attempt,
            error=str(exc),
            code=getattr(exc, "code", None),
        )


__all__ = ["PublishPipeline", "PublishResult"]
