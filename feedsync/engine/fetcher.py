"""Bounded-concurrency feed retrieval with item-level filtering."""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Callable, Sequence
from urllib.parse import urlparse, urlsplit

import feedparser
import httpx
import structlog
from selectolax.parser import HTMLParser

from ..config import FetchConfig
from .items import FeedItem, Source
from .worker_pool import WorkerPool

_YEAR_TOKEN = re.compile(r"(?:^|[/_\-.=&?])((?:19|20)\d{2})(?=[/_\-.=&?]|$)")
_WHITESPACE = re.compile(r"\s+")
_ID_CANDIDATES = ("guid", "id", "link")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SourceFetchResult:
    """Filtered items for one source plus the items dropped only for age."""

    items: list[FeedItem] = field(default_factory=list)
    aged: list[FeedItem] = field(default_factory=list)
    failed: bool = False


def is_stale_url(url: str, current_year: int, min_years: int = 4) -> bool:
    """True when the URL only carries year tokens ``min_years``+ years old.

    Path and query are scanned; the host is not. An unparsable URL is never
    considered stale.
    """

    if not url:
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    years = [int(match) for match in _YEAR_TOKEN.findall(f"{parts.path}?{parts.query}")]
    if not years:
        return False
    return max(years) <= current_year - min_years


def strip_html(text: str) -> str:
    if not text:
        return ""
    if "<" in text:
        text = HTMLParser(text).text(separator=" ")
    return _WHITESPACE.sub(" ", text).strip()


def _entry_value(entry: Any, key: str) -> Any:
    getter = getattr(entry, "get", None)
    if getter is not None:
        return getter(key)
    return getattr(entry, key, None)


def _entry_datetime(entry: Any, now: datetime) -> datetime:
    for key in ("published_parsed", "updated_parsed", "created_parsed"):
        parsed = _entry_value(entry, key)
        if parsed:
            return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
    for key in ("published", "updated"):
        raw = _entry_value(entry, key)
        if isinstance(raw, str) and raw.strip():
            text = raw.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed_dt = datetime.fromisoformat(text)
            except ValueError:
                continue
            if parsed_dt.tzinfo is None:
                parsed_dt = parsed_dt.replace(tzinfo=timezone.utc)
            return parsed_dt.astimezone(timezone.utc)
    return now


def normalize_entry(
    entry: Any,
    source: Source,
    feed_title: str | None = None,
    now: datetime | None = None,
) -> FeedItem:
    """Turn a feedparser entry into a :class:`FeedItem`."""

    now = now or _utcnow()
    title = str(_entry_value(entry, "title") or "").strip()
    link = str(_entry_value(entry, "link") or "").strip()
    if not link:
        for enclosure in _entry_value(entry, "enclosures") or []:
            href = _entry_value(enclosure, "href") or _entry_value(enclosure, "url")
            if href:
                link = str(href).strip()
                break

    item_id = ""
    for key in _ID_CANDIDATES:
        candidate = _entry_value(entry, key)
        if candidate and str(candidate).strip():
            item_id = str(candidate).strip()
            break
    if not item_id:
        item_id = f"{source.identity}#{title or 'no-title'}"

    summary = _entry_value(entry, "summary") or ""
    if not summary:
        content = _entry_value(entry, "content") or []
        if content:
            summary = _entry_value(content[0], "value") or ""

    source_name = source.display_name or feed_title or urlparse(source.identity).hostname or source.identity
    return FeedItem(
        id=item_id,
        title=title or "(no title)",
        canonical_url=link,
        published_at=_entry_datetime(entry, now),
        excerpt=strip_html(str(summary)),
        source_name=source_name,
        source_identity=source.identity,
    )


class FetchScheduler:
    """Retrieve every source through a fixed pool of ``concurrency`` workers.

    The scheduler never reads or writes dedup state; it only returns filtered
    items per source, in the order the sources were given.
    """

    def __init__(
        self,
        config: FetchConfig,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.logger = logger or structlog.get_logger("feedsync.fetcher")
        self.clock = clock
        self._owns_client = client is None
        self._client = client or httpx.Client(
            follow_redirects=True,
            timeout=config.timeout_ms / 1000,
            headers={"User-Agent": config.user_agent},
        )
        self._pool: WorkerPool[Source, SourceFetchResult] = WorkerPool(config.concurrency, name="fetch")
        self._counter_lock = Lock()
        self.fetch_failures = 0
        self.link_drops = 0

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def fetch_all(self, sources: Sequence[Source]) -> list[SourceFetchResult]:
        return self._pool.map(sources, lambda source, _index: self.run_source(source))

    def run_source(self, source: Source) -> SourceFetchResult:
        try:
            return self.filter_items(self.fetch_source(source))
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("feed_error", source=source.identity, error=str(exc))
            with self._counter_lock:
                self.fetch_failures += 1
            return SourceFetchResult(failed=True)

    def fetch_source(self, source: Source) -> list[FeedItem]:
        response = self._client.get(source.identity, timeout=self.config.timeout_ms / 1000)
        response.raise_for_status()
        parsed = feedparser.parse(response.content)
        entries = parsed.get("entries") or []
        if parsed.get("bozo") and not entries:
            raise ValueError(f"unparsable feed: {parsed.get('bozo_exception')}")
        feed_title = (parsed.get("feed") or {}).get("title")
        now = self.clock()
        return [normalize_entry(entry, source, feed_title, now) for entry in entries]

    def filter_items(self, items: Sequence[FeedItem]) -> SourceFetchResult:
        now = self.clock()
        cutoff = None
        if self.config.max_article_age_days > 0:
            cutoff = now - timedelta(days=self.config.max_article_age_days)
        result = SourceFetchResult()
        for item in items:
            if is_stale_url(item.canonical_url, now.year, self.config.stale_url_years):
                self.logger.debug("stale_url_dropped", url=item.canonical_url)
                continue
            if cutoff is not None and item.published_at < cutoff:
                result.aged.append(item)
                continue
            result.items.append(item)
        # Liveness runs after age filtering.
        if self.config.link_validate:
            result.items = [item for item in result.items if self.check_link(item)]
        return result

    def check_link(self, item: FeedItem) -> bool:
        if not item.canonical_url:
            return True
        try:
            response = self._client.head(
                item.canonical_url,
                timeout=self.config.link_timeout_ms / 1000,
                follow_redirects=True,
            )
            alive = 200 <= response.status_code < 400
            error = None if alive else f"status {response.status_code}"
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            alive, error = False, str(exc) or type(exc).__name__
        if not alive:
            self.logger.warning("link_dead", url=item.canonical_url, source=item.source_identity, error=error)
            with self._counter_lock:
                self.link_drops += 1
        return alive


__all__ = [
    "FetchScheduler",
    "SourceFetchResult",
    "is_stale_url",
    "normalize_entry",
    "strip_html",
]
