"""Run timing and classifier cost accounting."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Iterator

# USD per 1M tokens.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-3.5-turbo": (0.50, 1.50),
}
DEFAULT_PRICING_MODEL = "gpt-4o-mini"


@dataclass
class AICostSummary:
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def monthly_estimate(self) -> float:
        """Projected spend for 30 daily runs."""
        return self.cost_usd * 30


@dataclass
class RunMetrics:
    """Thread-safe collector shared by the phases of one sync run."""

    timings: dict[str, float] = field(default_factory=dict)
    ai: AICostSummary = field(default_factory=AICostSummary)
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    @contextmanager
    def timer(self, label: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - started
            with self._lock:
                self.timings[label] = elapsed

    def record_ai_cost(self, input_tokens: int, output_tokens: int, model: str) -> float:
        input_rate, output_rate = MODEL_PRICING.get(model, MODEL_PRICING[DEFAULT_PRICING_MODEL])
        cost = (input_tokens * input_rate + output_tokens * output_rate) / 1_000_000
        with self._lock:
            self.ai.calls += 1
            self.ai.input_tokens += input_tokens
            self.ai.output_tokens += output_tokens
            self.ai.cost_usd += cost
        return cost

    def sorted_timings(self) -> list[tuple[str, float]]:
        with self._lock:
            return sorted(self.timings.items(), key=lambda pair: pair[1], reverse=True)


__all__ = ["AICostSummary", "MODEL_PRICING", "RunMetrics"]
