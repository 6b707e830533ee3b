"""Sync orchestrator wiring fetch, dedup, classify, publish and retention."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Sequence

from .config import SyncConfig
from .engine.classifier import Classifier
from .engine.fetcher import FetchScheduler
from .engine.items import FeedItem, Source, newest_first
from .engine.opml import parse_opml
from .engine.publisher import PublishPipeline, PublishResult
from .engine.quality import should_skip, update_stats
from .engine.retention import RetentionEnforcer, RetentionResult
from .engine.state import DedupFilter, PersistedState, StateStore
from .errors import ConfigError
from .logging_conf import component_logger
from .metrics import RunMetrics
from .store.base import RecordStore
from .ui import ProgressReporter


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RunSummary:
    """Counters describing one sync pass."""

    sources_total: int = 0
    sources_skipped: int = 0
    new_items: int = 0
    deferred_items: int = 0
    created: int = 0
    publish_failures: int = 0
    fetch_failures: int = 0
    link_drops: int = 0
    classify_fallbacks: int = 0
    age_archived: int = 0
    cap_archived: int = 0
    archive_failures: int = 0
    skipped_sources: list[str] = field(default_factory=list)
    metrics: RunMetrics = field(default_factory=RunMetrics)

    @property
    def recovered_errors(self) -> int:
        return (
            self.fetch_failures
            + self.link_drops
            + self.classify_fallbacks
            + self.publish_failures
            + self.archive_failures
        )


class SyncOrchestrator:
    """Run one synchronization pass against a record store.

    Collaborators default to the production implementations built from
    ``config``; tests inject fakes for the store, fetcher and classifier.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: RecordStore,
        *,
        fetcher: FetchScheduler | None = None,
        classifier: Classifier | None = None,
        state_store: StateStore | None = None,
        sources: Sequence[Source] | None = None,
        metrics: RunMetrics | None = None,
        progress: ProgressReporter | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.store = store
        self.metrics = metrics or RunMetrics()
        self.logger = component_logger("orchestrator")
        self.clock = clock
        self.fetcher = fetcher or FetchScheduler(config.fetch, logger=component_logger("fetcher"), clock=clock)
        self.classifier = classifier or Classifier(
            config.ai, metrics=self.metrics, logger=component_logger("classifier")
        )
        self.state_store = state_store or StateStore(config.state_file, logger=component_logger("state"))
        self.publisher = PublishPipeline(
            store,
            config.publish,
            logger=component_logger("publisher"),
            sleep=sleep,
            progress=progress,
        )
        self.retention = RetentionEnforcer(
            store, config.retention, clock=clock, logger=component_logger("retention")
        )
        self._sources = list(sources) if sources is not None else None

    def close(self) -> None:
        self.fetcher.close()
        self.classifier.close()

    def load_sources(self) -> list[Source]:
        if self._sources is not None:
            return list(self._sources)
        if self.config.opml_path is None:
            raise ConfigError("OPML_PATH is required")
        return parse_opml(Path(self.config.opml_path))

    def run(self) -> RunSummary:
        summary = RunSummary(metrics=self.metrics)
        all_sources = self.load_sources()
        if not all_sources:
            raise ConfigError("No feeds found in OPML")

        state = self.state_store.load()
        sources = self.select_sources(all_sources, state, summary)
        for source in sources:
            state.ensure(source.identity)
        self.logger.info(
            "sources_selected",
            total=len(all_sources),
            active=len(sources),
            skipped=summary.sources_skipped,
        )

        with self.metrics.timer("fetch"):
            results = self.fetcher.fetch_all(sources)
        summary.fetch_failures = self.fetcher.fetch_failures
        summary.link_drops = self.fetcher.link_drops

        with self.metrics.timer("dedup"):
            new_items: list[FeedItem] = []
            for source, result in zip(sources, results):
                new_items.extend(DedupFilter.partition(result.items, result.aged, state.ensure(source.identity)))
            new_items = newest_first(new_items)
            cap = self.config.fetch.max_articles
            if cap > 0 and len(new_items) > cap:
                # Deferred items stay marked seen.
                summary.deferred_items = len(new_items) - cap
                self.logger.info("new_items_capped", cap=cap, available=len(new_items))
                new_items = new_items[:cap]
        summary.new_items = len(new_items)
        self.logger.info("new_items", count=len(new_items))

        if new_items:
            with self.metrics.timer("classify"):
                classified = self.classifier.classify(new_items)
            summary.classify_fallbacks = self.classifier.fallback_batches

            with self.metrics.timer("publish"):
                published = self.publisher.publish(classified)
            self._apply_publish(summary, published)

            by_source: dict[str, list[FeedItem]] = defaultdict(list)
            for item in classified:
                by_source[item.source_identity].append(item)
            now = self.clock()
            for identity, items in by_source.items():
                update_stats(state, identity, items, now=now)

        self.checkpoint(state)

        with self.metrics.timer("retention"):
            retained = self.retention.run()
        self._apply_retention(summary, retained)

        self.logger.info(
            "sync_completed",
            new_items=summary.new_items,
            created=summary.created,
            publish_failures=summary.publish_failures,
            fetch_failures=summary.fetch_failures,
            archived=summary.age_archived + summary.cap_archived,
        )
        return summary

    def select_sources(
        self, sources: Sequence[Source], state: PersistedState, summary: RunSummary
    ) -> list[Source]:
        summary.sources_total = len(sources)
        quality = self.config.quality
        if not quality.auto_disable:
            return list(sources)
        active: list[Source] = []
        for source in sources:
            if should_skip(state, source.identity, quality.threshold, quality.min_sample):
                stats = state.sources[source.identity].stats
                self.logger.warning(
                    "source_auto_disabled",
                    source=source.identity,
                    quality_ratio=round(stats.quality_ratio, 3) if stats else None,
                    total=stats.total if stats else None,
                )
                summary.skipped_sources.append(source.identity)
                continue
            active.append(source)
        summary.sources_skipped = len(summary.skipped_sources)
        return active

    def checkpoint(self, state: PersistedState) -> None:
        with self.metrics.timer("checkpoint"):
            self.state_store.save(state)

    @staticmethod
    def _apply_publish(summary: RunSummary, result: PublishResult) -> None:
        summary.created = result.created
        summary.publish_failures = result.failed

    @staticmethod
    def _apply_retention(summary: RunSummary, result: RetentionResult) -> None:
        summary.age_archived = result.age_archived
        summary.cap_archived = result.cap_archived
        summary.archive_failures = result.failures


__all__ = ["RunSummary", "SyncOrchestrator"]
