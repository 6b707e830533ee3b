"""Batched remote triage of new items through an OpenAI-compatible API."""

from __future__ import annotations

import json
from pathlib import Path
from threading import Lock
from typing import Any, Sequence

import httpx
import structlog

from ..config import AIConfig
from ..metrics import RunMetrics
from .items import Classification, FeedItem
from .worker_pool import WorkerPool

FALLBACK_PROMPT = "You are an RSS triage assistant. Output valid JSON only."
EXCERPT_LIMIT = 800
RESULT_KEYS = ("results", "articles", "items")

REASON_DISABLED = "disabled"
REASON_PARSE_FAILED = "batch-parse-failed"
REASON_API_ERROR = "batch-api-error"


def load_system_prompt(path: Path | None, logger: Any = None) -> str:
    if path is None:
        return FALLBACK_PROMPT
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        if logger is not None:
            logger.info("prompt_fallback", path=str(path), error=str(exc))
        return FALLBACK_PROMPT
    return text or FALLBACK_PROMPT


def parse_results(text: str, expected: int) -> list[Classification]:
    """Decode a classifier reply; raise ``ValueError`` unless it holds ``expected`` records."""

    parsed = json.loads(text)
    if isinstance(parsed, list):
        results = parsed
    elif isinstance(parsed, dict):
        results = next((parsed[key] for key in RESULT_KEYS if isinstance(parsed.get(key), list)), [])
    else:
        raise ValueError(f"unexpected JSON type {type(parsed).__name__}")
    if len(results) != expected:
        raise ValueError(f"Expected {expected} results, got {len(results)}")
    return [Classification.from_payload(record) for record in results]


class Classifier:
    """Attach a :class:`Classification` to every item, one request per batch."""

    def __init__(
        self,
        config: AIConfig,
        metrics: RunMetrics | None = None,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.metrics = metrics or RunMetrics()
        self.logger = logger or structlog.get_logger("feedsync.classifier")
        self.system_prompt = load_system_prompt(config.prompt_path, self.logger) if config.enabled else FALLBACK_PROMPT
        self._owns_client = client is None and config.enabled
        self._client = client
        if self._owns_client:
            self._client = httpx.Client(timeout=config.timeout_ms / 1000)
        self._pool: WorkerPool[list[FeedItem], list[FeedItem]] = WorkerPool(config.concurrency, name="classify")
        self._counter_lock = Lock()
        self.fallback_batches = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def classify(self, items: Sequence[FeedItem]) -> list[FeedItem]:
        if not self.enabled:
            default = Classification.default(REASON_DISABLED)
            return [item.with_classification(default) for item in items]
        if not items:
            return []

        size = self.config.batch_size
        batches = [list(items[i : i + size]) for i in range(0, len(items), size)]
        self.logger.info(
            "triage_started",
            items=len(items),
            batches=len(batches),
            batch_size=size,
            concurrency=self.config.concurrency,
        )
        results = self._pool.map(batches, self._run_batch)
        return [item for batch in results for item in batch]

    def _run_batch(self, batch: list[FeedItem], index: int) -> list[FeedItem]:
        classified = self.classify_batch(batch)
        for item in classified:
            self.logger.debug(
                "item_triaged",
                batch=index + 1,
                title=item.title[:50],
                decision=item.decision.value,
                priority=item.classification.priority.value if item.classification else None,
            )
        return classified

    def classify_batch(self, batch: Sequence[FeedItem]) -> list[FeedItem]:
        try:
            response = self._http().post(
                f"{self.config.base_url.rstrip('/')}/chat/completions",
                json=self.build_request(batch),
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=self.config.timeout_ms / 1000,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self.logger.warning("batch_api_error", size=len(batch), error=str(exc) or type(exc).__name__)
            return self._fallback(batch, REASON_API_ERROR)

        try:
            body = response.json()
            self._record_usage(body)
            content = body["choices"][0]["message"]["content"] or "{}"
            classifications = parse_results(content.strip(), len(batch))
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            self.logger.warning("batch_parse_failed", size=len(batch), error=str(exc))
            return self._fallback(batch, REASON_PARSE_FAILED)
        return [item.with_classification(result) for item, result in zip(batch, classifications)]

    def build_request(self, batch: Sequence[FeedItem]) -> dict[str, Any]:
        blocks = []
        for position, item in enumerate(batch, start=1):
            blocks.append(
                f"\n[Article {position}]\n"
                f"Title: {item.title}\n"
                f"Source: {item.source_name}\n"
                f"Published: {item.published_at.isoformat()}\n"
                f"URL: {item.canonical_url}\n"
                f"Summary: {item.excerpt[:EXCERPT_LIMIT]}"
            )
        schema_lines = [
            '- decision: "keep" | "deprioritize" | "ignore"',
            '- priority: "High" | "Normal" | "Low"',
            "- topics: array of up to 5 tags",
            "- reason: brief explanation (<100 chars)",
        ]
        if self.config.summary:
            schema_lines.append("- abstract: concise 1-2 sentence summary (<=280 chars, factual, no emojis)")
        prompt = (
            f"Analyze these {len(batch)} articles and return a JSON object "
            f'{{"results": [...]}} with exactly {len(batch)} entries, in the same order.\n'
            + "\n---".join(blocks)
            + "\n\nEach entry has:\n"
            + "\n".join(schema_lines)
        )
        per_item = self.config.max_tokens
        if self.config.summary:
            per_item = max(per_item, self.config.summary_max_tokens)
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.1,
            "max_tokens": per_item * len(batch),
            "response_format": {"type": "json_object"},
        }

    def _record_usage(self, body: Any) -> None:
        usage = body.get("usage") if isinstance(body, dict) else None
        if not usage:
            return
        try:
            self.metrics.record_ai_cost(
                int(usage.get("prompt_tokens") or 0),
                int(usage.get("completion_tokens") or 0),
                self.config.model,
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.debug("usage_record_failed", error=str(exc))

    def _fallback(self, batch: Sequence[FeedItem], reason: str) -> list[FeedItem]:
        with self._counter_lock:
            self.fallback_batches += 1
        default = Classification.default(reason)
        return [item.with_classification(default) for item in batch]

    def _http(self) -> httpx.Client:
        if self._client is None:
            raise RuntimeError("classifier is disabled or closed")
        return self._client


__all__ = [
    "Classifier",
    "FALLBACK_PROMPT",
    "REASON_API_ERROR",
    "REASON_DISABLED",
    "REASON_PARSE_FAILED",
    "load_system_prompt",
    "parse_results",
]
