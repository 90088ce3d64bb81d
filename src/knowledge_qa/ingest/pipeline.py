"""Ingestion pipeline: resolve credential -> chunk -> embed/upsert -> meter."""

from __future__ import annotations

import math
from dataclasses import replace
from pathlib import Path
from typing import Any

from loguru import logger

from knowledge_qa.agent.providers import ProviderFactory
from knowledge_qa.credits.costs import IMAGE_INGEST_ACTION, CreditAction
from knowledge_qa.credits.resolver import CredentialResolver
from knowledge_qa.errors import ValidationError
from knowledge_qa.ingest.chunker import SourceAwareChunker
from knowledge_qa.ingest.indexer import Indexer
from knowledge_qa.ingest.parser import (
    ParserRegistry,
    is_valid_url,
    is_youtube_url,
    normalize_url,
    parse_html,
)
from knowledge_qa.obs.usage import Timer, UsageStore, estimate_token_count
from knowledge_qa.retrieval.vector_store import VectorCollection
from knowledge_qa.types import (
    CredentialContext,
    IngestResult,
    ParsedSource,
    SourceType,
    TranscriptSegment,
)


def audio_minutes(duration_seconds: float) -> int:
    """Billable minutes: every started minute counts, at least one."""

    return max(1, math.ceil(duration_seconds / 60.0))


class IngestPipeline:
    """Turns raw sources into searchable vectors, funded per request.

    The credential is resolved before anything else, so a caller without
    enough credits never reaches the embedding provider. Chunking runs
    next and raises `EmptyContentError` for sources with nothing usable.
    The source is then indexed as one set and, on the credits path, the
    precomputed cost is deducted once.
    """

    def __init__(
        self,
        *,
        resolver: CredentialResolver,
        providers: ProviderFactory,
        collection: VectorCollection,
        chunker: SourceAwareChunker | None = None,
        indexer: Indexer | None = None,
        parser_registry: ParserRegistry | None = None,
        usage_store: UsageStore | None = None,
    ) -> None:
        self._resolver = resolver
        self._providers = providers
        self._collection = collection
        self._chunker = chunker or SourceAwareChunker()
        self._indexer = indexer or Indexer()
        self._parser_registry = parser_registry or ParserRegistry()
        self._usage_store = usage_store

    def ingest_path(
        self,
        path: str | Path,
        *,
        user_id: str | None = None,
        byok_key: str | None = None,
        document_id: str | None = None,
        source_name: str | None = None,
        transcript_type: SourceType = SourceType.VIDEO,
    ) -> IngestResult:
        """Parse a local file by extension and ingest it.

        Documents (text, markdown, PDF) are billed per page. Transcript JSON
        files are ingested as `transcript_type`, which decides whether they
        are billed per video or per audio minute.
        """

        parsed = self._parser_registry.parse_path(path, source_name=source_name)
        if parsed.source_type is SourceType.DOCUMENT:
            return self.ingest_document(
                parsed, user_id=user_id, byok_key=byok_key, document_id=document_id
            )
        return self.ingest_transcript(
            parsed.segments,
            source_name=parsed.source_name,
            source_type=transcript_type,
            user_id=user_id,
            byok_key=byok_key,
            document_id=document_id,
        )

    def ingest_document(
        self,
        parsed: ParsedSource,
        *,
        user_id: str | None = None,
        byok_key: str | None = None,
        document_id: str | None = None,
    ) -> IngestResult:
        """Ingest a paged document; billed per page."""

        _require_name(parsed.source_name)
        if not any(page.strip() for page in parsed.pages) and not parsed.text.strip():
            raise ValidationError("Document has no text content")
        if not parsed.pages:
            parsed = replace(parsed, pages=[parsed.text])
        return self._run(
            parsed,
            action=CreditAction.UPLOAD_DOCUMENT_PAGE,
            quantity=parsed.page_count,
            user_id=user_id,
            byok_key=byok_key,
            document_id=document_id,
            meter_details={"pages": parsed.page_count},
        )

    def ingest_web(
        self,
        url: str,
        *,
        html: str | None = None,
        text: str | None = None,
        title: str | None = None,
        user_id: str | None = None,
        byok_key: str | None = None,
        document_id: str | None = None,
    ) -> IngestResult:
        """Ingest a web page from its HTML or already-extracted text."""

        if not url or not url.strip():
            raise ValidationError("URL is required")
        normalized = normalize_url(url)
        if not is_valid_url(normalized):
            raise ValidationError(f"Invalid URL: {url}")
        if is_youtube_url(normalized):
            raise ValidationError(
                "YouTube URLs are not web pages; ingest the video transcript instead"
            )

        if html:
            parsed = parse_html(html, normalized)
            if title:
                parsed.source_name = title.strip()
        elif text and text.strip():
            parsed = ParsedSource(
                source_name=(title or normalized).strip(),
                source_type=SourceType.WEB,
                text=text,
                pages=[text],
                url=normalized,
            )
        else:
            raise ValidationError("Either html or text is required for a web page")

        return self._run(
            parsed,
            action=CreditAction.PROCESS_WEB,
            quantity=1,
            user_id=user_id,
            byok_key=byok_key,
            document_id=document_id,
            meter_details={"url": normalized},
        )

    def ingest_transcript(
        self,
        segments: list[TranscriptSegment],
        *,
        source_name: str,
        source_type: SourceType = SourceType.VIDEO,
        user_id: str | None = None,
        byok_key: str | None = None,
        document_id: str | None = None,
        url: str | None = None,
    ) -> IngestResult:
        """Ingest a timed transcript.

        Video is billed once per video; audio per started minute, charged
        as a single deduction for the whole recording.
        """

        _require_name(source_name)
        if source_type not in (SourceType.AUDIO, SourceType.VIDEO):
            raise ValidationError(f"Transcripts must be audio or video, got {source_type.value}")
        if not any(segment.text.strip() for segment in segments):
            raise ValidationError("Transcript has no segments")

        parsed = ParsedSource(
            source_name=source_name,
            source_type=source_type,
            segments=list(segments),
            url=url,
        )
        if source_type is SourceType.AUDIO:
            minutes = audio_minutes(parsed.duration_seconds)
            action, quantity = CreditAction.TRANSCRIBE_AUDIO_MINUTE, minutes
            details: dict[str, Any] = {"minutes": minutes}
        else:
            action, quantity = CreditAction.PROCESS_YOUTUBE, 1
            details = {"duration_seconds": round(parsed.duration_seconds, 1)}
        return self._run(
            parsed,
            action=action,
            quantity=quantity,
            user_id=user_id,
            byok_key=byok_key,
            document_id=document_id,
            meter_details=details,
        )

    def ingest_image(
        self,
        description: str,
        *,
        source_name: str,
        extracted_text: bool = False,
        user_id: str | None = None,
        byok_key: str | None = None,
        document_id: str | None = None,
    ) -> IngestResult:
        """Ingest an image's description or extracted text as one chunk."""

        _require_name(source_name)
        if not description or not description.strip():
            raise ValidationError("Image description is required")
        parsed = ParsedSource(
            source_name=source_name,
            source_type=SourceType.IMAGE,
            text=description,
            extracted_text=extracted_text,
        )
        return self._run(
            parsed,
            action=IMAGE_INGEST_ACTION,
            quantity=1,
            user_id=user_id,
            byok_key=byok_key,
            document_id=document_id,
            meter_details={"extracted_text": extracted_text},
        )

    def remove_source(self, source_name: str) -> int:
        """Delete every vector of a source; returns how many were removed."""

        _require_name(source_name)
        removed = self._collection.delete_source(source_name)
        logger.info(f"[Ingest] Removed {removed} vectors of {source_name!r}")
        return removed

    def _run(
        self,
        parsed: ParsedSource,
        *,
        action: CreditAction,
        quantity: int,
        user_id: str | None,
        byok_key: str | None,
        document_id: str | None,
        meter_details: dict[str, Any],
    ) -> IngestResult:
        context = self._resolver.resolve(
            action, user_id=user_id, byok_key=byok_key, quantity=quantity
        )
        chunks = self._chunker.chunk(parsed)
        bundle = self._providers.build(context.resolved_key)

        with Timer() as timer:
            vector_ids = self._indexer.index(
                chunks, bundle.embedder, self._collection, document_id=document_id
            )

        metering = self._resolver.meter(
            context,
            {
                **meter_details,
                "source": parsed.source_name,
                "chunks": len(vector_ids),
            },
        )
        self._record_usage(
            context,
            parsed,
            chunks_text=[chunk.text for chunk in chunks],
            latency_ms=timer.elapsed_ms,
            charged=metering.charged,
        )

        logger.info(
            f"[Ingest] {parsed.source_type.value} {parsed.source_name!r}: "
            f"{len(vector_ids)} chunks indexed via {context.key_source.value}"
        )
        return IngestResult(
            source_name=parsed.source_name,
            source_type=parsed.source_type,
            chunks_indexed=len(vector_ids),
            mode=context.key_source,
            document_id=document_id,
            credits_used=metering.charged if context.is_metered else None,
            credits_remaining=metering.balance if context.is_metered else None,
            team_name=context.team_name,
            vector_ids=vector_ids,
        )

    def _record_usage(
        self,
        context: CredentialContext,
        parsed: ParsedSource,
        *,
        chunks_text: list[str],
        latency_ms: float,
        charged: int,
    ) -> None:
        if self._usage_store is None:
            return
        try:
            self._usage_store.create_record(
                operation=f"ingest_{parsed.source_type.value}",
                model=self._providers.embedding_model,
                key_source=context.key_source.value,
                tokens_used=sum(estimate_token_count(text) for text in chunks_text),
                latency_ms=latency_ms,
                user_id=context.user_id,
                credits_charged=charged,
                metadata={"source": parsed.source_name},
            )
        except Exception as exc:
            logger.warning(f"[Ingest] Failed to record usage: {exc}")


def _require_name(source_name: str | None) -> None:
    if not source_name or not source_name.strip():
        raise ValidationError("Source name is required")
