"""Record store Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterator

from .records import NotionRecord, QueryPage, StoredRecord


class RecordStore(ABC):
    """Paged query, create and archive over a remote record collection."""

    @abstractmethod
    def query(
        self,
        filter: dict[str, Any] | None = None,
        sorts: list[dict[str, str]] | None = None,
        start_cursor: str | None = None,
        page_size: int = 100,
    ) -> QueryPage:
        """Return one page of records matching ``filter``."""

    @abstractmethod
    def create(self, record: NotionRecord) -> str:
        """Create a record and return its id."""

    @abstractmethod
    def archive(self, record_id: str) -> None:
        """Archive a record; archiving an archived record is a no-op."""

    def iter_pages(
        self,
        filter: dict[str, Any] | None = None,
        sorts: list[dict[str, str]] | None = None,
        page_size: int = 100,
    ) -> Iterator[list[StoredRecord]]:
        cursor: str | None = None
        while True:
            page = self.query(filter=filter, sorts=sorts, start_cursor=cursor, page_size=page_size)
            yield page.results
            if not page.has_more or not page.next_cursor:
                return
            cursor = page.next_cursor

    def close(self) -> None:
        """Release underlying resources."""


__all__ = ["RecordStore"]
