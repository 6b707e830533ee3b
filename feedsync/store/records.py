"""Typed record payloads for the remote store and filter builders."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..engine.items import Classification, Decision, FeedItem

TEXT_LIMIT = 2000
SELECT_LIMIT = 100


class Status(str, Enum):
    UNREAD = "Unread"
    READ = "Read"
    ARCHIVED = "Archived"

    @classmethod
    def for_decision(cls, decision: Decision) -> "Status":
        if decision is Decision.IGNORE:
            return cls.ARCHIVED
        if decision is Decision.DEPRIORITIZE:
            return cls.READ
        return cls.UNREAD


def clean_select(value: str) -> str:
    """Select option names may not contain commas."""
    return value.replace(",", " -")[:SELECT_LIMIT]


def truncate_text(value: str, limit: int = TEXT_LIMIT) -> str:
    """Cut ``value`` to ``limit`` UTF-16 code units without splitting a surrogate pair."""
    encoded = value.encode("utf-16-le")
    if len(encoded) <= limit * 2:
        return value
    cut = encoded[: limit * 2]
    if 0xD800 <= int.from_bytes(cut[-2:], "little") <= 0xDBFF:
        cut = cut[:-2]
    return cut.decode("utf-16-le")


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class NotionRecord:
    """One database page; ``None`` marks an absent optional property."""

    title: str
    url: str | None
    published: datetime
    source: str
    summary: str
    status: Status
    tags: tuple[str, ...] | None = None

    @classmethod
    def from_item(cls, item: FeedItem) -> "NotionRecord":
        classification = item.classification or Classification.default("unclassified")
        lines: list[str] = []
        if classification.abstract:
            lines.append(f"AI Abstract: {classification.abstract}")
        if item.classification is not None:
            lines.append(
                f"AI: {classification.priority.value} | "
                f"{', '.join(classification.topics)} | {classification.reason}"
            )
        summary = "\n".join(lines)
        if summary:
            summary += "\n"
        summary += item.excerpt or ""
        return cls(
            title=truncate_text(item.title),
            url=item.canonical_url or None,
            published=item.published_at,
            source=clean_select(item.source_name),
            summary=truncate_text(summary),
            status=Status.for_decision(classification.decision),
            tags=classification.topics or None,
        )

    def to_properties(self) -> dict[str, Any]:
        properties: dict[str, Any] = {
            "Title": {"title": [{"text": {"content": truncate_text(self.title)}}]},
            "Published": {"date": {"start": _iso(self.published)}},
            "Source": {"select": {"name": self.source}},
            "Summary": {
                "rich_text": [{"type": "text", "text": {"content": truncate_text(self.summary)}}]
            },
            "Status": {"select": {"name": self.status.value}},
        }
        if self.url is not None:
            properties["URL"] = {"url": self.url}
        if self.tags:
            properties["Tags"] = {"multi_select": [{"name": clean_select(tag)} for tag in self.tags]}
        return properties


@dataclass(frozen=True, slots=True)
class StoredRecord:
    """The subset of a stored page the sync engine reads back."""

    id: str
    source: str | None = None
    url: str | None = None
    status: str | None = None
    published: str | None = None

    @classmethod
    def from_page(cls, page: dict[str, Any]) -> "StoredRecord":
        props = page.get("properties") or {}
        source = ((props.get("Source") or {}).get("select") or {}).get("name")
        status = ((props.get("Status") or {}).get("select") or {}).get("name")
        published = ((props.get("Published") or {}).get("date") or {}).get("start")
        return cls(
            id=str(page["id"]),
            source=source,
            url=(props.get("URL") or {}).get("url"),
            status=status,
            published=published,
        )


@dataclass(slots=True)
class QueryPage:
    results: list[StoredRecord]
    has_more: bool = False
    next_cursor: str | None = None


PUBLISHED_DESC: list[dict[str, str]] = [{"property": "Published", "direction": "descending"}]


def status_published_before(status: Status, cutoff: datetime) -> dict[str, Any]:
    return {
        "and": [
            {"property": "Status", "select": {"equals": status.value}},
            {"property": "Published", "date": {"before": _iso(cutoff)}},
        ]
    }


def source_equals(name: str) -> dict[str, Any]:
    return {"property": "Source", "select": {"equals": name}}


__all__ = [
    "NotionRecord",
    "PUBLISHED_DESC",
    "QueryPage",
    "SELECT_LIMIT",
    "Status",
    "StoredRecord",
    "TEXT_LIMIT",
    "clean_select",
    "source_equals",
    "status_published_before",
    "truncate_text",
]
