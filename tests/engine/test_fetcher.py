from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from feedsync.config import FetchConfig
from feedsync.engine.fetcher import FetchScheduler, is_stale_url, normalize_entry, strip_html
from feedsync.engine.items import Source

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
SOURCE = Source(identity="https://example.com/feed.xml", display_name="Example")

RSS = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0"><channel><title>Example Feed</title>
<item>
  <title>First</title>
  <link>https://example.com/posts/first</link>
  <guid>first-guid</guid>
  <pubDate>Mon, 20 May 2024 10:00:00 GMT</pubDate>
  <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;</description>
</item>
<item>
  <title>Second</title>
  <link>https://example.com/posts/second</link>
  <guid>second-guid</guid>
  <pubDate>Tue, 21 May 2024 10:00:00 GMT</pubDate>
  <description>Plain text</description>
</item>
</channel></rss>
"""


def _scheduler(handler, **config) -> FetchScheduler:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return FetchScheduler(FetchConfig(**config), client=client, clock=lambda: NOW)


def test_normalize_entry_prefers_guid() -> None:
    entry = {"id": "guid-1", "link": "https://example.com/a", "title": "A"}
    item = normalize_entry(entry, SOURCE, now=NOW)
    assert item.id == "guid-1"
    assert item.canonical_url == "https://example.com/a"
    assert item.source_name == "Example"


def test_normalize_entry_falls_back_to_link_then_synthesized_id() -> None:
    linked = normalize_entry({"link": "https://example.com/b", "title": "B"}, SOURCE, now=NOW)
    assert linked.id == "https://example.com/b"

    bare = {"title": "Only a title"}
    first = normalize_entry(bare, SOURCE, now=NOW)
    second = normalize_entry(bare, SOURCE, now=NOW)
    assert first.id == "https://example.com/feed.xml#Only a title"
    assert first.id == second.id

    untitled = normalize_entry({}, SOURCE, now=NOW)
    assert untitled.id == "https://example.com/feed.xml#no-title"
    assert untitled.title == "(no title)"
    assert untitled.published_at == NOW


def test_normalize_entry_uses_enclosure_and_iso_dates() -> None:
    entry = {
        "title": "Podcast",
        "enclosures": [{"href": "https://cdn.example.com/ep1.mp3"}],
        "published": "2024-05-02T08:30:00Z",
    }
    item = normalize_entry(entry, Source(identity="https://pods.example/rss", display_name=""), "Pods", NOW)
    assert item.canonical_url == "https://cdn.example.com/ep1.mp3"
    assert item.published_at == datetime(2024, 5, 2, 8, 30, tzinfo=timezone.utc)
    assert item.source_name == "Pods"


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://example.com/2019/05/old-post", True),
        ("https://example.com/blog/2020-01-02-title", True),
        ("https://example.com/2021/01/recent", False),
        ("https://example.com/2018/archive/2023/moved", False),
        ("https://example.com/posts/no-year", False),
        ("https://example.com/post?y=2015&id=7", True),
        ("https://example2015.com/posts/new", False),
        ("https://[broken/2015/post", False),
        ("", False),
    ],
)
def test_is_stale_url(url: str, expected: bool) -> None:
    assert is_stale_url(url, current_year=2024) is expected


def test_strip_html_compacts_whitespace() -> None:
    assert strip_html("<p>Hello\n  <b>world</b></p>") == "Hello world"
    assert strip_html("") == ""


def test_fetch_source_parses_feed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == SOURCE.identity
        return httpx.Response(200, content=RSS, headers={"Content-Type": "application/rss+xml"})

    scheduler = _scheduler(handler)
    result = scheduler.run_source(SOURCE)
    scheduler.close()

    assert not result.failed
    assert [item.title for item in result.items] == ["First", "Second"]
    first = result.items[0]
    assert first.id == "first-guid"
    assert first.excerpt == "Hello world"
    assert first.published_at == datetime(2024, 5, 20, 10, 0, tzinfo=timezone.utc)
    assert first.source_identity == SOURCE.identity


def test_failed_source_yields_empty_result() -> None:
    scheduler = _scheduler(lambda request: httpx.Response(500))
    results = scheduler.fetch_all([SOURCE])
    assert results[0].items == []
    assert results[0].failed
    assert scheduler.fetch_failures == 1


def test_filter_items_separates_aged_items(make_item) -> None:
    scheduler = _scheduler(lambda request: httpx.Response(200), max_article_age_days=30)
    fresh = make_item(published_at=datetime(2024, 5, 20, tzinfo=timezone.utc))
    old = make_item(published_at=datetime(2024, 3, 1, tzinfo=timezone.utc))
    stale = make_item(canonical_url="https://example.com/2015/01/ancient")

    result = scheduler.filter_items([fresh, old, stale])

    assert result.items == [fresh]
    assert result.aged == [old]


def test_link_check_drops_dead_links(make_item) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "HEAD"
        if request.url.path.endswith("dead"):
            return httpx.Response(404)
        if request.url.path.endswith("down"):
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200)

    scheduler = _scheduler(handler, link_validate=True)
    alive = make_item(canonical_url="https://example.com/posts/alive")
    dead = make_item(canonical_url="https://example.com/posts/dead")
    down = make_item(canonical_url="https://example.com/posts/down")
    no_url = make_item(canonical_url="")

    result = scheduler.filter_items([alive, dead, down, no_url])

    assert result.items == [alive, no_url]
    assert scheduler.link_drops == 2


def test_link_check_skips_items_already_aged(make_item) -> None:
    requests: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        return httpx.Response(200)

    scheduler = _scheduler(handler, link_validate=True, max_article_age_days=7)
    old = make_item(published_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    result = scheduler.filter_items([old])
    assert result.aged == [old]
    assert requests == []


BROKEN_RSS = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0"><channel><title>Broken Links</title>
<item><title>Good</title><link>https://example.com/posts/good</link><guid>good</guid>
<pubDate>Mon, 20 May 2024 10:00:00 GMT</pubDate></item>
<item><title>Bracket</title><link>https://[broken/post</link><guid>bracket</guid>
<pubDate>Mon, 20 May 2024 11:00:00 GMT</pubDate></item>
</channel></rss>
"""


@pytest.mark.parametrize("link_validate", [False, True])
def test_malformed_item_url_does_not_abort_run(link_validate: bool) -> None:
    other = Source(identity="https://other.example/rss", display_name="Other")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, content=BROKEN_RSS)
        if request.url.path.endswith("good"):
            return httpx.Response(200)
        return httpx.Response(404)

    scheduler = _scheduler(handler, link_validate=link_validate)
    results = scheduler.fetch_all([SOURCE, other])

    assert [result.failed for result in results] == [False, False]
    titles = [item.title for item in results[0].items]
    assert titles[0] == "Good"
    if link_validate:
        assert titles == ["Good"]
    else:
        assert titles == ["Good", "Bracket"]


def test_link_check_drops_invalid_url(make_item) -> None:
    scheduler = _scheduler(lambda request: httpx.Response(200), link_validate=True)
    good = make_item(canonical_url="https://example.com/posts/good")
    control = make_item(canonical_url="https://example.com/\x00post")

    result = scheduler.filter_items([good, control])

    assert result.items == [good]
    assert scheduler.link_drops == 1


def test_filter_error_marks_source_failed(monkeypatch) -> None:
    scheduler = _scheduler(lambda request: httpx.Response(200, content=RSS))

    def explode(items):
        raise ValueError("bad item")

    monkeypatch.setattr(scheduler, "filter_items", explode)
    result = scheduler.run_source(SOURCE)

    assert result.failed
    assert scheduler.fetch_failures == 1
