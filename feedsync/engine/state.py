"""Persisted dedup ledger and per-source quality statistics."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import structlog

from .items import FeedItem


@dataclass
class SourceStats:
    total: int = 0
    kept: int = 0
    deprioritized: int = 0
    ignored: int = 0
    quality_ratio: float = 0.0
    last_updated: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SourceStats":
        return cls(
            total=int(payload.get("total", 0)),
            kept=int(payload.get("kept", 0)),
            deprioritized=int(payload.get("deprioritized", 0)),
            ignored=int(payload.get("ignored", 0)),
            # "quality" is the key older state files used
            quality_ratio=float(payload.get("qualityRatio", payload.get("quality", 0.0))),
            last_updated=payload.get("lastUpdated"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "kept": self.kept,
            "deprioritized": self.deprioritized,
            "ignored": self.ignored,
            "qualityRatio": self.quality_ratio,
            "lastUpdated": self.last_updated,
        }


@dataclass
class SourceState:
    seen: dict[str, bool] = field(default_factory=dict)
    stats: SourceStats | None = None

    def has_seen(self, item_id: str) -> bool:
        return item_id in self.seen

    def mark_seen(self, item_id: str) -> None:
        self.seen[item_id] = True


@dataclass
class PersistedState:
    """Mapping from source identity to its :class:`SourceState`."""

    sources: dict[str, SourceState] = field(default_factory=dict)

    def ensure(self, identity: str) -> SourceState:
        state = self.sources.get(identity)
        if state is None:
            state = SourceState()
            self.sources[identity] = state
        return state

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PersistedState":
        raw_sources = payload.get("sources")
        if raw_sources is None:
            raw_sources = payload.get("feeds", {})
        if not isinstance(raw_sources, dict):
            raise ValueError("state 'sources' must be a mapping")
        sources: dict[str, SourceState] = {}
        for identity, entry in raw_sources.items():
            if not isinstance(entry, dict):
                continue
            seen = entry.get("seen") or {}
            stats = entry.get("stats")
            sources[identity] = SourceState(
                seen={str(key): True for key in seen},
                stats=SourceStats.from_dict(stats) if isinstance(stats, dict) else None,
            )
        return cls(sources=sources)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for identity, state in self.sources.items():
            entry: dict[str, Any] = {"seen": dict(state.seen)}
            if state.stats is not None:
                entry["stats"] = state.stats.to_dict()
            payload[identity] = entry
        return {"sources": payload}


class StateStore:
    """Load and atomically write the JSON state file."""

    def __init__(self, path: Path, logger: structlog.BoundLogger | None = None) -> None:
        self.path = path
        self.logger = logger or structlog.get_logger("feedsync.state")

    def load(self) -> PersistedState:
        if not self.path.exists():
            return PersistedState()
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("state file must contain an object")
            return PersistedState.from_dict(payload)
        except (OSError, ValueError) as exc:
            self.logger.warning("state_load_failed", path=str(self.path), error=str(exc))
            return PersistedState()

    def save(self, state: PersistedState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(state.to_dict(), indent=2, ensure_ascii=False)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as stream:
                stream.write(text)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self.logger.debug("state_saved", path=str(self.path), sources=len(state.sources))


class DedupFilter:
    """Partition a source's items into new vs already considered."""

    @staticmethod
    def partition(
        items: Iterable[FeedItem],
        aged: Iterable[FeedItem],
        source_state: SourceState,
    ) -> list[FeedItem]:
        # Aged items are recorded but never returned.
        for item in aged:
            source_state.mark_seen(item.id)
        fresh: list[FeedItem] = []
        for item in items:
            if source_state.has_seen(item.id):
                continue
            source_state.mark_seen(item.id)
            fresh.append(item)
        return fresh


__all__ = ["DedupFilter", "PersistedState", "SourceState", "SourceStats", "StateStore"]
