"""Per-source quality statistics and the auto-disable rule."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from .items import Decision, FeedItem
from .state import PersistedState, SourceStats

LOW_QUALITY_RATIO = 0.1
LOW_QUALITY_MIN_TOTAL = 10


def update_stats(
    state: PersistedState,
    identity: str,
    items: Iterable[FeedItem],
    now: datetime | None = None,
) -> SourceStats | None:
    """Fold this run's decisions for ``identity`` into its rolling stats.

    Sources without a state entry are left alone. An item without a
    classification counts as kept.
    """

    source_state = state.sources.get(identity)
    if source_state is None:
        return None
    stats = source_state.stats or SourceStats()
    for item in items:
        stats.total += 1
        decision = item.decision
        if decision is Decision.KEEP:
            stats.kept += 1
        elif decision is Decision.DEPRIORITIZE:
            stats.deprioritized += 1
        elif decision is Decision.IGNORE:
            stats.ignored += 1
    stats.quality_ratio = stats.kept / stats.total if stats.total else 0.0
    stamp = now or datetime.now(timezone.utc)
    stats.last_updated = stamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    source_state.stats = stats
    return stats


def should_skip(state: PersistedState, identity: str, threshold: float, min_sample: int) -> bool:
    source_state = state.sources.get(identity)
    if source_state is None or source_state.stats is None:
        return False
    stats = source_state.stats
    if stats.total < min_sample:
        return False
    return stats.quality_ratio < threshold


@dataclass(frozen=True, slots=True)
class QualityRow:
    identity: str
    kept: int
    total: int
    quality_ratio: float


@dataclass(slots=True)
class QualityReport:
    best: list[QualityRow] = field(default_factory=list)
    worst: list[QualityRow] = field(default_factory=list)
    low_quality_count: int = 0

    @property
    def empty(self) -> bool:
        return not self.best


def quality_report(state: PersistedState, limit: int = 10) -> QualityReport:
    """Rank sources with at least one observation by quality ratio.

    ``worst`` is only populated when there are more than ``limit`` ranked
    sources, so the two lists never overlap.
    """

    rows = [
        QualityRow(identity, entry.stats.kept, entry.stats.total, entry.stats.quality_ratio)
        for identity, entry in state.sources.items()
        if entry.stats is not None and entry.stats.total > 0
    ]
    rows.sort(key=lambda row: row.quality_ratio, reverse=True)
    report = QualityReport(best=rows[:limit])
    if len(rows) > limit:
        report.worst = rows[-limit:]
    report.low_quality_count = sum(
        1 for row in rows if row.quality_ratio < LOW_QUALITY_RATIO and row.total >= LOW_QUALITY_MIN_TOTAL
    )
    return report


__all__ = ["QualityReport", "QualityRow", "quality_report", "should_skip", "update_stats"]
