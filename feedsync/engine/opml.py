"""OPML subscription list parsing."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path
from urllib.parse import urlparse

from .items import Source

_URL_ATTRIBUTES = ("xmlUrl", "xmlurl", "url")
_NAME_ATTRIBUTES = ("text", "title")


def _first_attr(outline: ET.Element, names: tuple[str, ...]) -> str:
    for name in names:
        value = (outline.attrib.get(name) or "").strip()
        if value:
            return value
    return ""


def parse_opml_text(text: str) -> list[Source]:
    """Return one :class:`Source` per feed outline, deduplicated by URL."""

    root = ET.fromstring(text)
    unique: dict[str, Source] = {}
    for outline in root.iter("outline"):
        feed_url = _first_attr(outline, _URL_ATTRIBUTES)
        if not feed_url:
            continue
        name = _first_attr(outline, _NAME_ATTRIBUTES) or urlparse(feed_url).hostname or feed_url
        unique[feed_url] = Source(identity=feed_url, display_name=name)
    return list(unique.values())


def parse_opml(path: Path) -> list[Source]:
    return parse_opml_text(path.read_text(encoding="utf-8"))


__all__ = ["parse_opml", "parse_opml_text"]
