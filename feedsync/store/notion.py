"""Notion database client over httpx."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from ..config import NotionConfig
from ..errors import NotionAPIError
from .base import RecordStore
from .records import NotionRecord, QueryPage, StoredRecord


def _retry_after(response: httpx.Response, body: dict[str, Any]) -> float | None:
    raw = response.headers.get("Retry-After") or body.get("retry_after")
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


class NotionRecordStore(RecordStore):
    """Query, create and archive pages in one Notion database."""

    def __init__(
        self,
        config: NotionConfig,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.database_id = config.database_id
        self.logger = logger or structlog.get_logger("feedsync.notion")
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=config.base_url.rstrip("/") + "/",
            timeout=config.timeout_ms / 1000,
        )
        self._headers = {
            "Authorization": f"Bearer {config.token}",
            "Notion-Version": config.version,
            "Content-Type": "application/json",
        }

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def query(
        self,
        filter: dict[str, Any] | None = None,
        sorts: list[dict[str, str]] | None = None,
        start_cursor: str | None = None,
        page_size: int = 100,
    ) -> QueryPage:
        payload: dict[str, Any] = {"page_size": page_size}
        if filter:
            payload["filter"] = filter
        if sorts:
            payload["sorts"] = sorts
        if start_cursor:
            payload["start_cursor"] = start_cursor
        body = self._request("POST", f"databases/{self.database_id}/query", payload)
        return QueryPage(
            results=[StoredRecord.from_page(page) for page in body.get("results", [])],
            has_more=bool(body.get("has_more")),
            next_cursor=body.get("next_cursor"),
        )

    def create(self, record: NotionRecord) -> str:
        body = self._request(
            "POST",
            "pages",
            {"parent": {"database_id": self.database_id}, "properties": record.to_properties()},
        )
        return str(body.get("id", ""))

    def archive(self, record_id: str) -> None:
        self._request("PATCH", f"pages/{record_id}", {"archived": True})

    def _request(self, method: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, json=payload, headers=self._headers)
        except httpx.HTTPError as exc:
            raise NotionAPIError(str(exc) or type(exc).__name__, code="network_error") from exc
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        self.logger.debug("notion_request", method=method, path=path, status=response.status_code)
        if response.is_error:
            raise NotionAPIError(
                str(body.get("message") or f"HTTP {response.status_code}"),
                status=response.status_code,
                code=body.get("code"),
                retry_after=_retry_after(response, body),
            )
        return body


__all__ = ["NotionRecordStore"]
