"""Shared fixtures: configuration, item builders and an in-memory record store."""

from __future__ import annotations

from datetime import datetime, timezone
from itertools import count
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from feedsync.config import (
    AIConfig,
    ConfigLocator,
    ConfigRepository,
    FetchConfig,
    NotionConfig,
    PublishConfig,
    RetentionConfig,
    SyncConfig,
)
from feedsync.engine.items import Classification, FeedItem
from feedsync.store.base import RecordStore
from feedsync.store.records import NotionRecord, QueryPage, StoredRecord


def _parse_iso(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class FakeRecordStore(RecordStore):
    """Evaluates the Notion filter and sort dialect used by the engine."""

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        self.created: list[NotionRecord] = []
        self.archived: list[str] = []
        self.queries: list[dict[str, Any]] = []
        self.create_errors: list[Exception] = []
        self.archive_failures: set[str] = set()
        self._ids = count(1)

    def seed(
        self,
        *,
        source: str,
        published: datetime,
        status: str = "Unread",
        url: str | None = None,
    ) -> str:
        record_id = f"page-{next(self._ids)}"
        self.records[record_id] = {
            "id": record_id,
            "source": source,
            "published": published,
            "status": status,
            "url": url,
            "archived": False,
        }
        return record_id

    def live(self) -> list[dict[str, Any]]:
        return [record for record in self.records.values() if not record["archived"]]

    def query(
        self,
        filter: dict[str, Any] | None = None,
        sorts: list[dict[str, str]] | None = None,
        start_cursor: str | None = None,
        page_size: int = 100,
    ) -> QueryPage:
        self.queries.append({"filter": filter, "sorts": sorts, "start_cursor": start_cursor})
        matches = [record for record in self.live() if filter is None or self._matches(record, filter)]
        matches.sort(key=lambda record: record["id"])
        for sort in sorts or []:
            if sort["property"] == "Published":
                matches.sort(key=lambda record: record["published"], reverse=sort["direction"] == "descending")
        offset = int(start_cursor or 0)
        window = matches[offset : offset + page_size]
        has_more = offset + page_size < len(matches)
        return QueryPage(
            results=[
                StoredRecord(
                    id=record["id"],
                    source=record["source"],
                    url=record["url"],
                    status=record["status"],
                    published=record["published"].isoformat(),
                )
                for record in window
            ],
            has_more=has_more,
            next_cursor=str(offset + page_size) if has_more else None,
        )

    def create(self, record: NotionRecord) -> str:
        if self.create_errors:
            raise self.create_errors.pop(0)
        self.created.append(record)
        return self.seed(
            source=record.source,
            published=record.published,
            status=record.status.value,
            url=record.url,
        )

    def archive(self, record_id: str) -> None:
        if record_id in self.archive_failures:
            raise RuntimeError(f"cannot archive {record_id}")
        self.records[record_id]["archived"] = True
        self.archived.append(record_id)

    def _matches(self, record: dict[str, Any], node: dict[str, Any]) -> bool:
        if "and" in node:
            return all(self._matches(record, child) for child in node["and"])
        prop = node["property"]
        if "select" in node:
            key = "status" if prop == "Status" else "source"
            return record[key] == node["select"]["equals"]
        if "date" in node:
            return record["published"] < _parse_iso(node["date"]["before"])
        raise AssertionError(f"unsupported filter {node}")


@pytest.fixture
def fake_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def make_item() -> Callable[..., FeedItem]:
    counter = count(1)

    def _builder(**overrides: Any) -> FeedItem:
        index = next(counter)
        classification = overrides.pop("classification", None)
        base: dict[str, Any] = {
            "id": f"item-{index}",
            "title": f"Item {index}",
            "canonical_url": f"https://example.com/posts/item-{index}",
            "published_at": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            "excerpt": "Excerpt text",
            "source_name": "Example Feed",
            "source_identity": "https://example.com/feed.xml",
        }
        base.update(overrides)
        item = FeedItem(**base)
        if isinstance(classification, Classification):
            item = item.with_classification(classification)
        return item

    return _builder


@pytest.fixture
def sync_config(tmp_path: Path) -> SyncConfig:
    opml = tmp_path / "feeds.opml"
    opml.write_text(
        '<opml version="2.0"><body>'
        '<outline text="Example" xmlUrl="https://example.com/feed.xml"/>'
        "</body></opml>",
        encoding="utf-8",
    )
    return SyncConfig(
        opml_path=opml,
        state_file=tmp_path / "data" / ".rss_seen.json",
        fetch=FetchConfig(concurrency=2),
        ai=AIConfig(triage=False),
        publish=PublishConfig(request_delay_ms=0, retry_base_delay_ms=10),
        retention=RetentionConfig(prune_max_age_days=30, per_feed_hard_cap=500),
        notion=NotionConfig(token="secret", database_id="db-1"),
    )


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterable[ConfigRepository]:
    for name in ("NOTION_TOKEN", "NOTION_DB_ID", "OPML_PATH", "OPENAI_API_KEY", "STATE_FILE", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FEEDSYNC_HOME", str(tmp_path))
    locator = ConfigLocator(project_root=tmp_path)
    yield ConfigRepository(locator)
