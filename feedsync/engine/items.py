"""Runtime value types flowing through the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

MAX_TOPICS = 5


class Decision(str, Enum):
    """Triage verdict for an item."""

    KEEP = "keep"
    DEPRIORITIZE = "deprioritize"
    IGNORE = "ignore"

    @classmethod
    def coerce(cls, value: Any) -> "Decision":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.KEEP


class Priority(str, Enum):
    """Reading priority suggested by the classifier."""

    HIGH = "High"
    NORMAL = "Normal"
    LOW = "Low"

    @classmethod
    def coerce(cls, value: Any) -> "Priority":
        text = str(value).strip().capitalize()
        try:
            return cls(text)
        except ValueError:
            return cls.NORMAL


@dataclass(frozen=True, slots=True)
class Source:
    """One subscribed feed; ``identity`` is the dedup and stats key."""

    identity: str
    display_name: str


@dataclass(frozen=True, slots=True)
class Classification:
    decision: Decision = Decision.KEEP
    priority: Priority = Priority.NORMAL
    topics: tuple[str, ...] = ()
    reason: str = ""
    abstract: str | None = None

    @classmethod
    def default(cls, reason: str) -> "Classification":
        return cls(decision=Decision.KEEP, priority=Priority.NORMAL, topics=(), reason=reason)

    @classmethod
    def from_payload(cls, payload: Any) -> "Classification":
        """Normalise one classifier result record."""

        if not isinstance(payload, dict):
            raise ValueError(f"classification record must be an object, got {type(payload).__name__}")
        raw_topics = payload.get("topics") or []
        if isinstance(raw_topics, str):
            raw_topics = [raw_topics]
        topics = tuple(str(topic).strip() for topic in raw_topics if str(topic).strip())[:MAX_TOPICS]
        abstract = payload.get("abstract")
        return cls(
            decision=Decision.coerce(payload.get("decision", "keep")),
            priority=Priority.coerce(payload.get("priority", "Normal")),
            topics=topics,
            reason=str(payload.get("reason") or ""),
            abstract=str(abstract).strip() if abstract else None,
        )


@dataclass(frozen=True, slots=True)
class FeedItem:
    """A normalised feed entry; immutable within one run."""

    id: str
    title: str
    canonical_url: str
    published_at: datetime
    excerpt: str
    source_name: str
    source_identity: str
    classification: Classification | None = field(default=None, compare=False)

    def with_classification(self, classification: Classification) -> "FeedItem":
        return replace(self, classification=classification)

    @property
    def decision(self) -> Decision:
        if self.classification is None:
            return Decision.KEEP
        return self.classification.decision


def newest_first(items: Iterable[FeedItem]) -> list[FeedItem]:
    def _key(item: FeedItem) -> datetime:
        published = item.published_at
        if published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)
        return published

    return sorted(items, key=_key, reverse=True)


__all__ = [
    "Classification",
    "Decision",
    "FeedItem",
    "MAX_TOPICS",
    "Priority",
    "Source",
    "newest_first",
]
