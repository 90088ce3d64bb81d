"""Usage records, cost estimation and groundedness scoring."""

from __future__ import annotations

import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)
_CITATION_TAG = re.compile(r"\[\d+\]")

# USD per 1K tokens: (input, output)
_MODEL_PRICING: dict[str, tuple[float, float]] = {
    "text-embedding-3-large": (0.00013, 0.0),
    "gpt-3.5-turbo": (0.0005, 0.0015),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4o": (0.0025, 0.01),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-4": (0.03, 0.06),
    "claude-3-haiku-20240307": (0.00025, 0.00125),
    "claude-3-sonnet-20240229": (0.003, 0.015),
    "claude-3-opus-20240229": (0.015, 0.075),
}


@dataclass(slots=True)
class UsageRecord:
    record_id: str
    timestamp_utc: str
    operation: str
    model: str
    key_source: str
    tokens_used: int
    estimated_cost_usd: float
    latency_ms: float
    user_id: str | None = None
    credits_charged: int = 0
    groundedness: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CostModel:
    """Token pricing lookup with a default rate for unknown models.

    Chat usage arrives as a single total, so it is split 80/20 between
    input and output tokens.
    """

    default_rates: tuple[float, float] = (0.0005, 0.0015)
    input_share: float = 0.8

    def estimate_cost(self, model: str, tokens_used: int, operation: str = "chat") -> float:
        rates = _MODEL_PRICING.get(model, self.default_rates)
        if operation == "embedding":
            return (tokens_used / 1000.0) * rates[0]
        input_tokens = int(tokens_used * self.input_share)
        output_tokens = tokens_used - input_tokens
        return (input_tokens / 1000.0) * rates[0] + (output_tokens / 1000.0) * rates[1]


class GroundednessEvaluator:
    """Share of answer sentences supported by at least one context snippet.

    - Split the answer into sentences.
    - Remove citation markers like `[3]`.
    - A sentence is grounded if its token overlap with some snippet is at
      least `min_overlap`.
    """

    def __init__(self, min_overlap: float = 0.35) -> None:
        self.min_overlap = min_overlap

    def score(self, answer: str, source_snippets: list[str]) -> float:
        sentences = [
            sentence.strip()
            for sentence in re.split(r"(?<=[.!?])\s+|\n+", answer)
            if sentence.strip()
        ]
        if not sentences:
            return 1.0
        if not source_snippets:
            return 0.0

        source_token_sets = [set(self._normalize(source)) for source in source_snippets]
        grounded = 0
        for sentence in sentences:
            sentence_tokens = set(self._normalize(_CITATION_TAG.sub("", sentence)))
            if not sentence_tokens:
                grounded += 1
                continue
            if any(
                self._overlap(sentence_tokens, source_tokens) >= self.min_overlap
                for source_tokens in source_token_sets
            ):
                grounded += 1
        return grounded / len(sentences)

    @staticmethod
    def _normalize(text: str) -> list[str]:
        return [token.lower() for token in _TOKEN_PATTERN.findall(text)]

    @staticmethod
    def _overlap(a: set[str], b: set[str]) -> float:
        if not a or not b:
            return 0.0
        return len(a & b) / len(a)


class UsageStore:
    """In-memory usage log backing the `/usage` endpoint."""

    def __init__(
        self,
        *,
        cost_model: CostModel | None = None,
        groundedness_evaluator: GroundednessEvaluator | None = None,
        max_records: int = 10_000,
    ) -> None:
        self._records: list[UsageRecord] = []
        self._lock = threading.Lock()
        self._cost_model = cost_model or CostModel()
        self._groundedness = groundedness_evaluator or GroundednessEvaluator()
        self._max_records = max_records

    def create_record(
        self,
        *,
        operation: str,
        model: str,
        key_source: str,
        tokens_used: int,
        latency_ms: float,
        user_id: str | None = None,
        credits_charged: int = 0,
        answer: str | None = None,
        source_snippets: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> UsageRecord:
        groundedness = None
        if answer is not None:
            groundedness = self._groundedness.score(answer, source_snippets or [])
        cost_operation = "embedding" if operation.startswith("ingest") else "chat"
        record = UsageRecord(
            record_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            operation=operation,
            model=model,
            key_source=key_source,
            tokens_used=tokens_used,
            estimated_cost_usd=self._cost_model.estimate_cost(
                model, tokens_used, cost_operation
            ),
            latency_ms=latency_ms,
            user_id=user_id,
            credits_charged=credits_charged,
            groundedness=groundedness,
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._records.append(record)
            if len(self._records) > self._max_records:
                del self._records[: len(self._records) - self._max_records]
        return record

    def list_recent(self, limit: int = 20, user_id: str | None = None) -> list[UsageRecord]:
        with self._lock:
            records = list(self._records)
        if user_id is not None:
            records = [record for record in records if record.user_id == user_id]
        return records[-limit:] if limit > 0 else []

    def summary(self, user_id: str | None = None) -> dict[str, float | int]:
        """Aggregate usage for dashboard display."""
        with self._lock:
            records = list(self._records)
        if user_id is not None:
            records = [record for record in records if record.user_id == user_id]
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_groundedness": 0.0,
                "total_tokens": 0,
                "total_credits_charged": 0,
                "total_estimated_cost_usd": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        scored = [record.groundedness for record in records if record.groundedness is not None]
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_groundedness": sum(scored) / len(scored) if scored else 0.0,
            "total_tokens": sum(record.tokens_used for record in records),
            "total_credits_charged": sum(record.credits_charged for record in records),
            "total_estimated_cost_usd": sum(record.estimated_cost_usd for record in records),
        }


class Timer:
    """Context timer for pipeline latency."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
