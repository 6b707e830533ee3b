from __future__ import annotations

from datetime import datetime, timezone

from feedsync.engine.items import Classification, Decision, Priority
from feedsync.store.records import (
    NotionRecord,
    Status,
    StoredRecord,
    clean_select,
    source_equals,
    status_published_before,
    truncate_text,
)


def test_record_from_classified_item(make_item) -> None:
    item = make_item(
        title="Rust 2.0 announced",
        source_name="Lang News, Weekly",
        excerpt="The excerpt.",
        classification=Classification(
            decision=Decision.DEPRIORITIZE,
            priority=Priority.HIGH,
            topics=("rust", "lang,design"),
            reason="relevant",
            abstract="Rust gets a major release.",
        ),
    )
    record = NotionRecord.from_item(item)

    assert record.status is Status.READ
    assert record.source == "Lang News - Weekly"
    assert record.summary == (
        "AI Abstract: Rust gets a major release.\n"
        "AI: High | rust, lang,design | relevant\n"
        "The excerpt."
    )
    props = record.to_properties()
    assert props["Title"]["title"][0]["text"]["content"] == "Rust 2.0 announced"
    assert props["Published"]["date"]["start"] == "2024-05-01T12:00:00Z"
    assert props["Status"]["select"]["name"] == "Read"
    assert props["Tags"]["multi_select"] == [{"name": "rust"}, {"name": "lang -design"}]
    assert props["URL"]["url"] == item.canonical_url


def test_optional_properties_are_omitted(make_item) -> None:
    item = make_item(canonical_url="", classification=Classification.default("disabled"))
    props = NotionRecord.from_item(item).to_properties()
    assert "URL" not in props
    assert "Tags" not in props
    assert props["Status"]["select"]["name"] == "Unread"


def test_long_fields_are_truncated(make_item) -> None:
    item = make_item(title="t" * 2500, excerpt="e" * 5000, source_name="s" * 150)
    record = NotionRecord.from_item(item)
    assert len(record.title) == 2000
    assert len(record.summary) == 2000
    assert len(record.source) == 100


def test_truncation_counts_utf16_code_units(make_item) -> None:
    emoji = "\U0001F600"
    item = make_item(title=emoji * 1500, excerpt="a" + emoji * 1500)
    record = NotionRecord.from_item(item)

    assert len(record.title.encode("utf-16-le")) == 4000
    assert record.title == emoji * 1000
    # An odd offset would split a pair; the dangling high surrogate is dropped.
    assert record.summary == "a" + emoji * 999
    assert truncate_text("short") == "short"


def test_unclassified_item_has_plain_summary(make_item) -> None:
    record = NotionRecord.from_item(make_item(excerpt="Just text"))
    assert record.summary == "Just text"
    assert record.status is Status.UNREAD


def test_filters_and_select_cleaning() -> None:
    cutoff = datetime(2024, 5, 1, tzinfo=timezone.utc)
    assert status_published_before(Status.READ, cutoff) == {
        "and": [
            {"property": "Status", "select": {"equals": "Read"}},
            {"property": "Published", "date": {"before": "2024-05-01T00:00:00Z"}},
        ]
    }
    assert source_equals("Feed") == {"property": "Source", "select": {"equals": "Feed"}}
    assert clean_select("a,b,c") == "a -b -c"


def test_stored_record_from_page() -> None:
    page = {
        "id": "abc",
        "properties": {
            "Source": {"select": {"name": "Feed"}},
            "Status": {"select": {"name": "Unread"}},
            "URL": {"url": "https://example.com/x"},
            "Published": {"date": {"start": "2024-05-01"}},
        },
    }
    assert StoredRecord.from_page(page) == StoredRecord(
        id="abc", source="Feed", url="https://example.com/x", status="Unread", published="2024-05-01"
    )
    assert StoredRecord.from_page({"id": "bare", "properties": {"Source": {"select": None}}}).source is None
