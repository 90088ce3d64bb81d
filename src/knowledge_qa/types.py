"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class SourceType(str, Enum):
    DOCUMENT = "document"
    WEB = "web"
    AUDIO = "audio"
    VIDEO = "video"
    IMAGE = "image"


class QuestionIntent(str, Enum):
    FACTUAL = "factual"
    SYNTHESIS = "synthesis"
    META_SOURCE = "meta_source"


class KeySource(str, Enum):
    BYOK = "byok"
    TEAM = "team"
    CREDITS = "credits"


@dataclass(frozen=True, slots=True)
class PageRange:
    start_page: int
    end_page: int


@dataclass(frozen=True, slots=True)
class UrlRef:
    url: str


@dataclass(frozen=True, slots=True)
class TimeRange:
    start_time: float
    end_time: float


Provenance = Union[PageRange, UrlRef, TimeRange, None]


@dataclass(frozen=True, slots=True)
class TranscriptSegment:
    """One timed transcript segment; offsets are in seconds."""

    text: str
    start: float
    duration: float

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(slots=True)
class ParsedSource:
    """Raw per-source content before chunking.

    Documents carry `pages`, transcripts carry `segments`, web pages and
    images carry `text`.
    """

    source_name: str
    source_type: SourceType
    text: str = ""
    pages: list[str] = field(default_factory=list)
    segments: list[TranscriptSegment] = field(default_factory=list)
    url: str | None = None
    extracted_text: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return max(1, len(self.pages))

    @property
    def duration_seconds(self) -> float:
        if not self.segments:
            return 0.0
        return max(segment.end for segment in self.segments)


@dataclass(frozen=True, slots=True)
class Chunk:
    """A bounded, provenance-tagged fragment of one source."""

    text: str
    source_name: str
    source_type: SourceType
    ordinal_index: int
    total_chunks_in_source: int
    provenance: Provenance = None
    headings: tuple[str, ...] = ()
    extracted_text: bool | None = None

    def to_metadata(self, document_id: str | None = None) -> dict[str, Any]:
        """Flatten into vector metadata; absent optional fields are omitted."""

        metadata: dict[str, Any] = {
            "text": self.text,
            "source": self.source_name,
            "source_type": self.source_type.value,
            "chunk_index": self.ordinal_index,
            "total_chunks": self.total_chunks_in_source,
        }
        if document_id is not None:
            metadata["document_id"] = document_id
        if isinstance(self.provenance, UrlRef):
            metadata["url"] = self.provenance.url
        elif isinstance(self.provenance, TimeRange):
            metadata["start_time"] = self.provenance.start_time
            metadata["end_time"] = self.provenance.end_time
        elif isinstance(self.provenance, PageRange):
            metadata["page_start"] = self.provenance.start_page
            metadata["page_end"] = self.provenance.end_page
        if self.headings:
            metadata["headings"] = list(self.headings)
        if self.extracted_text is not None:
            metadata["extracted_text"] = self.extracted_text
        return metadata

    @classmethod
    def from_metadata(cls, metadata: dict[str, Any]) -> "Chunk":
        provenance: Provenance = None
        if metadata.get("url"):
            provenance = UrlRef(url=str(metadata["url"]))
        elif metadata.get("start_time") is not None:
            start = float(metadata["start_time"])
            provenance = TimeRange(
                start_time=start,
                end_time=float(metadata.get("end_time", start)),
            )
        elif metadata.get("page_start") is not None:
            start_page = int(metadata["page_start"])
            provenance = PageRange(
                start_page=start_page,
                end_page=int(metadata.get("page_end", start_page)),
            )
        try:
            source_type = SourceType(metadata.get("source_type", "document"))
        except ValueError:
            source_type = SourceType.DOCUMENT
        extracted = metadata.get("extracted_text")
        return cls(
            text=str(metadata.get("text") or ""),
            source_name=str(metadata.get("source") or ""),
            source_type=source_type,
            ordinal_index=int(metadata.get("chunk_index", 0)),
            total_chunks_in_source=int(metadata.get("total_chunks", 1)),
            provenance=provenance,
            headings=tuple(metadata.get("headings") or ()),
            extracted_text=None if extracted is None else bool(extracted),
        )


@dataclass(frozen=True, slots=True)
class IndexedVector:
    id: str
    embedding: list[float]
    chunk: Chunk
    document_id: str | None = None

    @property
    def metadata(self) -> dict[str, Any]:
        return self.chunk.to_metadata(self.document_id)


@dataclass(frozen=True, slots=True)
class QueryMatch:
    """Raw vector collection hit."""

    id: str
    score: float
    metadata: dict[str, Any]


@dataclass(frozen=True, slots=True)
class RetrievalMatch:
    """A chunk hit scoped to one query; higher score is better."""

    chunk: Chunk
    score: float
    search_order: int = 0
    document_id: str | None = None

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def source_name(self) -> str:
        return self.chunk.source_name

    @property
    def source_type(self) -> SourceType:
        return self.chunk.source_type


@dataclass(slots=True)
class SourceGroup:
    """Matches of one normalized source, keeping first-seen display casing."""

    key: str
    display_name: str
    matches: list[RetrievalMatch] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CredentialContext:
    """Which credential funds a request; created once and read-only."""

    key_source: KeySource
    resolved_key: str
    action: str
    cost_in_credits: int = 0
    quantity: int = 1
    user_id: str | None = None
    team_name: str | None = None

    @property
    def is_metered(self) -> bool:
        return self.key_source is KeySource.CREDITS


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    user_id: str
    delta: int
    reason: str
    balance_after: int
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DeductionResult:
    success: bool
    balance: int
    error: str | None = None


@dataclass(frozen=True, slots=True)
class MeteringResult:
    charged: int
    balance: int | None
    success: bool = True
    error: str | None = None


@dataclass(frozen=True, slots=True)
class CompletionResult:
    text: str
    tokens_used: int
    model: str


@dataclass(frozen=True, slots=True)
class ComposedPrompt:
    intent: QuestionIntent
    system_prompt: str
    user_prompt: str
    temperature: float


@dataclass(slots=True)
class SourceCitation:
    number: int
    source: str
    relevance: int
    timestamp: str | None = None
    audio_id: str | None = None
    url: str | None = None


@dataclass(slots=True)
class AnswerEnvelope:
    """Response of one question-answering call."""

    answer: str
    sources: list[SourceCitation]
    mode: KeySource
    credits_used: int | None = None
    credits_remaining: int | None = None
    team_name: str | None = None
    intent: QuestionIntent | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "answer": self.answer,
            "sources": [
                {
                    key: value
                    for key, value in {
                        "number": item.number,
                        "source": item.source,
                        "relevance": item.relevance,
                        "timestamp": item.timestamp,
                        "audioId": item.audio_id,
                        "url": item.url,
                    }.items()
                    if value is not None
                }
                for item in self.sources
            ],
            "mode": self.mode.value,
        }
        if self.mode is KeySource.CREDITS:
            payload["credits"] = {
                "used": self.credits_used or 0,
                "remaining": self.credits_remaining,
            }
        if self.team_name is not None:
            payload["teamName"] = self.team_name
        if self.intent is not None:
            payload["intent"] = self.intent.value
        return payload


@dataclass(slots=True)
class IngestResult:
    source_name: str
    source_type: SourceType
    chunks_indexed: int
    mode: KeySource
    document_id: str | None = None
    credits_used: int | None = None
    credits_remaining: int | None = None
    team_name: str | None = None
    vector_ids: list[str] = field(default_factory=list)
