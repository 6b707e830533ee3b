"""Remote record store SPI and the Notion implementation."""

from .base import RecordStore
from .notion import NotionRecordStore
from .records import NotionRecord, QueryPage, Status, StoredRecord

__all__ = ["NotionRecord", "NotionRecordStore", "QueryPage", "RecordStore", "Status", "StoredRecord"]
