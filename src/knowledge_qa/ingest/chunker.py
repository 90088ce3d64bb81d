"""Source-type-aware chunking implementation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from loguru import logger

from knowledge_qa.config import ChunkingConfig
from knowledge_qa.errors import EmptyContentError
from knowledge_qa.types import (
    Chunk,
    PageRange,
    ParsedSource,
    Provenance,
    SourceType,
    TimeRange,
    TranscriptSegment,
    UrlRef,
)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_HEADING = re.compile(r"^#{1,6}\s+")
_NATURAL_BREAK = re.compile(r"[.!?]$")


@dataclass(slots=True)
class _Paragraph:
    text: str
    page: int
    is_heading: bool = False


@dataclass(slots=True)
class _ChunkState:
    parts: list[str] = field(default_factory=list)
    pages: list[int] = field(default_factory=list)
    headings: list[str] = field(default_factory=list)
    length: int = 0

    def add(self, text: str, page: int, separator: str, heading: str | None = None) -> None:
        if self.parts:
            self.length += len(separator)
        self.parts.append(text)
        self.pages.append(page)
        self.length += len(text)
        if heading:
            self.headings.append(heading)

    def projected(self, text: str, separator: str) -> int:
        return self.length + (len(separator) if self.parts else 0) + len(text)


@dataclass(slots=True)
class _Draft:
    text: str
    provenance: Provenance
    headings: tuple[str, ...] = ()


class SourceAwareChunker:
    """Splits per-source content into bounded, provenance-tagged chunks.

    Strategy is selected by `SourceType`:

    1. Documents and web pages.
       Text is split on paragraph boundaries and paragraphs are packed until
       the next one would exceed the target size. A paragraph that is larger
       than the target on its own is re-split on sentence boundaries. Markdown
       style headings are recorded on the chunk but count toward size like
       any other paragraph.

    2. Audio and video transcripts.
       Timed segments are accumulated until the running length would exceed
       the target. A cut is preferred where the previous segment ends a
       sentence; while the chunk is still below `transcript_soft_floor` of the
       target, it keeps growing instead of cutting mid-thought. Each chunk
       spans the first segment's start to the last segment's end.

    3. Images.
       The single description / extracted-text blob is the only chunk.

    Fragments shorter than `min_chunk_chars` are dropped. A source that ends
    up with no chunks raises `EmptyContentError`.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def target_size_for(self, source_type: SourceType) -> int:
        return {
            SourceType.DOCUMENT: self.config.document_chars,
            SourceType.WEB: self.config.web_chars,
            SourceType.VIDEO: self.config.video_chars,
            SourceType.AUDIO: self.config.audio_chars,
            SourceType.IMAGE: self.config.document_chars,
        }[source_type]

    def chunk(
        self,
        content: ParsedSource,
        source_type: SourceType | None = None,
        target_size_hint: int | None = None,
    ) -> list[Chunk]:
        """Chunk one parsed source.

        Args:
            content: Parsed text, pages or transcript segments.
            source_type: Overrides `content.source_type` when given.
            target_size_hint: Character budget per chunk; defaults per type.

        Returns:
            Ordered chunks with contiguous `ordinal_index` values.

        Raises:
            EmptyContentError: no fragment survived the minimum-length filter.
        """

        kind = source_type or content.source_type
        target = target_size_hint or self.target_size_for(kind)

        if kind in (SourceType.DOCUMENT, SourceType.WEB):
            drafts = self._chunk_text(content, target, kind)
        elif kind in (SourceType.AUDIO, SourceType.VIDEO):
            drafts = self._chunk_transcript(content.segments, target)
        else:
            drafts = [_Draft(text=content.text.strip(), provenance=None)]

        usable = [
            draft
            for draft in drafts
            if len(draft.text.strip()) >= self.config.min_chunk_chars
        ]
        if not usable:
            raise EmptyContentError(
                f"No usable content could be extracted from {content.source_name!r}"
            )

        total = len(usable)
        chunks = [
            Chunk(
                text=draft.text.strip(),
                source_name=content.source_name,
                source_type=kind,
                ordinal_index=index,
                total_chunks_in_source=total,
                provenance=draft.provenance,
                headings=draft.headings,
                extracted_text=content.extracted_text if kind is SourceType.IMAGE else None,
            )
            for index, draft in enumerate(usable)
        ]
        logger.debug(
            f"[Chunker] {content.source_name!r} ({kind.value}) -> {total} chunks "
            f"(dropped {len(drafts) - total})"
        )
        return chunks

    def _chunk_text(
        self, content: ParsedSource, target: int, kind: SourceType
    ) -> list[_Draft]:
        pages = content.pages or [content.text]
        paragraphs = [
            _Paragraph(text=text, page=page, is_heading=bool(_HEADING.match(text)))
            for page, page_text in enumerate(pages, start=1)
            for text in self._split_paragraphs(page_text)
        ]

        def provenance(state: _ChunkState) -> Provenance:
            if kind is SourceType.WEB:
                return UrlRef(url=content.url) if content.url else None
            return PageRange(start_page=min(state.pages), end_page=max(state.pages))

        drafts: list[_Draft] = []
        state = _ChunkState()

        def flush() -> None:
            nonlocal state
            if state.parts:
                drafts.append(
                    _Draft(
                        text="\n\n".join(state.parts),
                        provenance=provenance(state),
                        headings=tuple(state.headings),
                    )
                )
            state = _ChunkState()

        for paragraph in paragraphs:
            heading = _HEADING.sub("", paragraph.text) if paragraph.is_heading else None

            if len(paragraph.text) > target:
                flush()
                *full, last = self._pack_sentences(paragraph.text, target)
                for piece in full:
                    state.add(piece, paragraph.page, " ", heading)
                    flush()
                # The last piece stays open so following paragraphs pack onto it.
                state.add(last, paragraph.page, "\n\n", heading)
                continue

            if state.parts and state.projected(paragraph.text, "\n\n") > target:
                flush()
            state.add(paragraph.text, paragraph.page, "\n\n", heading)

        flush()
        return drafts

    def _pack_sentences(self, paragraph: str, target: int) -> list[str]:
        groups: list[list[str]] = []
        current: list[str] = []
        length = 0
        for sentence in self._split_sentences(paragraph):
            if len(sentence) > target:
                if current:
                    groups.append(current)
                    current, length = [], 0
                groups.extend(piece.split() for piece in self._hard_split(sentence, target))
                continue
            projected = length + (1 if current else 0) + len(sentence)
            if current and projected > target:
                groups.append(current)
                current, length = [sentence], len(sentence)
            else:
                current.append(sentence)
                length = projected
        if current:
            groups.append(current)
        self._rebalance_tail(groups, target)
        return [" ".join(group) for group in groups]

    def _rebalance_tail(self, groups: list[list[str]], target: int) -> None:
        """Move trailing units (sentences, or words of a hard split) forward
        until the last group is long enough to keep."""

        if len(groups) < 2:
            return
        previous, tail = groups[-2], groups[-1]
        while (
            len(" ".join(tail)) < self.config.min_chunk_chars
            and len(previous) > 1
            and len(" ".join([previous[-1], *tail])) <= target
        ):
            tail.insert(0, previous.pop())

    def _chunk_transcript(
        self, segments: list[TranscriptSegment], target: int
    ) -> list[_Draft]:
        drafts: list[_Draft] = []
        current: list[TranscriptSegment] = []
        length = 0

        def draft_from(group: list[TranscriptSegment]) -> _Draft:
            return _Draft(
                text=" ".join(segment.text.strip() for segment in group),
                provenance=TimeRange(start_time=group[0].start, end_time=group[-1].end),
            )

        for segment in segments:
            text = segment.text.strip()
            if not text:
                continue

            if current and length + len(text) > target:
                natural_break = bool(_NATURAL_BREAK.search(current[-1].text.strip()))
                if not natural_break and length < target * self.config.transcript_soft_floor:
                    current.append(segment)
                    length += len(text) + 1
                    continue
                drafts.append(draft_from(current))
                current = [segment]
                length = len(text)
            else:
                current.append(segment)
                length += len(text) + 1

        if current:
            drafts.append(draft_from(current))
        return drafts

    @staticmethod
    def _hard_split(text: str, size: int) -> list[str]:
        words = text.split()
        pieces: list[str] = []
        current = ""
        for word in words:
            while len(word) > size:
                if current:
                    pieces.append(current)
                    current = ""
                pieces.append(word[:size])
                word = word[size:]
            candidate = f"{current} {word}" if current else word
            if current and len(candidate) > size:
                pieces.append(current)
                current = word
            else:
                current = candidate
        if current:
            pieces.append(current)
        return pieces

    @staticmethod
    def _split_paragraphs(text: str) -> list[str]:
        return [part.strip() for part in re.split(r"\n\s*\n", text) if part.strip()]

    @staticmethod
    def _split_sentences(paragraph: str) -> list[str]:
        return [part.strip() for part in _SENTENCE_SPLIT.split(paragraph) if part.strip()]
