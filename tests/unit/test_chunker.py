import pytest

from knowledge_qa.config import ChunkingConfig
from knowledge_qa.errors import EmptyContentError
from knowledge_qa.ingest.chunker import SourceAwareChunker
from knowledge_qa.types import (
    PageRange,
    ParsedSource,
    SourceType,
    TimeRange,
    TranscriptSegment,
    UrlRef,
)

_SENTENCE = "Data governance requires strict access control and encryption. "


def _paragraph(repeats: int = 6) -> str:
    return (_SENTENCE * repeats).strip()


def test_document_paragraphs_are_packed_within_target() -> None:
    chunker = SourceAwareChunker()
    pages = ["\n\n".join(_paragraph() for _ in range(5)) for _ in range(2)]
    source = ParsedSource(source_name="Policy.pdf", source_type=SourceType.DOCUMENT, pages=pages)

    chunks = chunker.chunk(source)

    assert len(chunks) >= 3
    assert all(len(chunk.text) <= 1500 for chunk in chunks)
    assert all(len(chunk.text) >= 50 for chunk in chunks)
    assert [chunk.ordinal_index for chunk in chunks] == list(range(len(chunks)))
    assert all(chunk.total_chunks_in_source == len(chunks) for chunk in chunks)
    assert isinstance(chunks[0].provenance, PageRange)
    assert chunks[0].provenance.start_page == 1
    assert chunks[-1].provenance.end_page == 2


def test_oversized_paragraph_is_resplit_by_sentence() -> None:
    chunker = SourceAwareChunker()
    source = ParsedSource(
        source_name="long.txt",
        source_type=SourceType.DOCUMENT,
        pages=[_paragraph(repeats=70)],
    )

    chunks = chunker.chunk(source)

    assert len(chunks) >= 3
    assert all(len(chunk.text) <= 1500 for chunk in chunks)
    assert all(chunk.text.endswith(".") for chunk in chunks)


@pytest.mark.parametrize("repeats", [24, 48])
def test_short_tail_of_oversized_paragraph_is_kept(repeats: int) -> None:
    chunker = SourceAwareChunker()
    sentence = "Retention policies require encrypted backups for seven years."
    text = " ".join([sentence] * repeats) + " It ends here."
    source = ParsedSource(source_name="tail.txt", source_type=SourceType.DOCUMENT, pages=[text])

    chunks = chunker.chunk(source)

    assert any("It ends here." in chunk.text for chunk in chunks)
    assert all(len(chunk.text) <= 1500 for chunk in chunks)
    assert sum(chunk.text.count(sentence) for chunk in chunks) == repeats


def test_short_tail_of_hard_split_sentence_is_kept() -> None:
    chunker = SourceAwareChunker()
    run_on = " ".join(["abcdefghi"] * 100) + " tail end"
    source = ParsedSource(source_name="run-on.txt", source_type=SourceType.DOCUMENT, pages=[run_on])

    chunks = chunker.chunk(source, target_size_hint=500)

    assert len(chunks) == 3
    assert chunks[-1].text.endswith("tail end")
    assert all(len(chunk.text) <= 500 for chunk in chunks)
    assert " ".join(chunk.text for chunk in chunks).split() == run_on.split()


def test_oversized_paragraph_tail_packs_with_following_paragraph() -> None:
    chunker = SourceAwareChunker()
    sentence = "Retention policies require encrypted backups for seven years."
    oversized = " ".join([sentence] * 25)
    follow_up = "Audit logs are kept for two years."
    source = ParsedSource(
        source_name="policy.txt",
        source_type=SourceType.DOCUMENT,
        pages=[f"{oversized}\n\n{follow_up}"],
    )

    chunks = chunker.chunk(source)

    assert len(chunks) == 2
    assert chunks[1].text == f"{sentence}\n\n{follow_up}"


def test_headings_are_tagged_without_changing_size_accounting() -> None:
    chunker = SourceAwareChunker()
    text = "# Retention\n\n" + _paragraph(2) + "\n\n## Encryption\n\n" + _paragraph(2)
    source = ParsedSource(source_name="notes.md", source_type=SourceType.DOCUMENT, pages=[text])

    chunks = chunker.chunk(source)

    assert len(chunks) == 1
    assert chunks[0].headings == ("Retention", "Encryption")
    assert "# Retention" in chunks[0].text


def test_short_fragments_are_dropped_and_empty_source_raises() -> None:
    chunker = SourceAwareChunker()
    source = ParsedSource(
        source_name="scan.pdf",
        source_type=SourceType.DOCUMENT,
        pages=["Page 1", "   ", "ok"],
    )

    with pytest.raises(EmptyContentError):
        chunker.chunk(source)


def test_web_chunks_carry_url_provenance() -> None:
    chunker = SourceAwareChunker()
    source = ParsedSource(
        source_name="Governance Guide",
        source_type=SourceType.WEB,
        text=_paragraph(),
        url="https://example.com/guide",
    )

    chunks = chunker.chunk(source)

    assert chunks[0].provenance == UrlRef(url="https://example.com/guide")
    assert chunks[0].to_metadata()["url"] == "https://example.com/guide"


def test_transcript_cuts_at_sentence_boundaries_with_time_ranges() -> None:
    chunker = SourceAwareChunker(ChunkingConfig(min_chunk_chars=20))
    segments = [
        TranscriptSegment("Welcome to the show about data governance today", 0.0, 5.0),
        TranscriptSegment("we discuss encryption at rest and in transit.", 5.0, 5.0),
        TranscriptSegment("Next we cover access control lists and roles.", 10.0, 5.0),
        TranscriptSegment("Finally we wrap up with audit logging.", 15.0, 5.0),
    ]
    source = ParsedSource(source_name="episode", source_type=SourceType.VIDEO, segments=segments)

    chunks = chunker.chunk(source, target_size_hint=100)

    assert len(chunks) == 2
    assert chunks[0].provenance == TimeRange(start_time=0.0, end_time=10.0)
    assert chunks[1].provenance == TimeRange(start_time=10.0, end_time=20.0)
    assert chunks[0].text.endswith("in transit.")


def test_transcript_keeps_growing_below_soft_floor_without_natural_break() -> None:
    chunker = SourceAwareChunker(ChunkingConfig(min_chunk_chars=20))
    segments = [
        TranscriptSegment("and so the thing we were saying", 0.0, 3.0),
        TranscriptSegment(
            "is that every chunk should carry enough context to stand on its own in search results.",
            3.0,
            5.0,
        ),
    ]
    source = ParsedSource(source_name="podcast", source_type=SourceType.AUDIO, segments=segments)

    chunks = chunker.chunk(source, target_size_hint=100)

    assert len(chunks) == 1
    assert chunks[0].provenance == TimeRange(start_time=0.0, end_time=8.0)


def test_image_is_a_single_chunk_with_extracted_text_flag() -> None:
    chunker = SourceAwareChunker()
    description = "A whiteboard photo listing quarterly goals: hire two engineers, ship v2. " * 40
    source = ParsedSource(
        source_name="whiteboard.png",
        source_type=SourceType.IMAGE,
        text=description,
        extracted_text=True,
    )

    chunks = chunker.chunk(source)

    assert len(chunks) == 1
    assert chunks[0].extracted_text is True
    assert chunks[0].provenance is None
    assert chunks[0].to_metadata()["extracted_text"] is True
