from knowledge_qa.config import RetrievalConfig
from knowledge_qa.retrieval.selection import (
    DiverseContextSelector,
    compute_target_chunks,
    group_by_source,
    is_simple_question,
    matches_source_filter,
    normalize_source_name,
)
from knowledge_qa.types import Chunk, RetrievalMatch, SourceType

_FILLER = " covers retention, encryption and access review for customer records."


def _match(source: str, score: float, label: str, order: int = 0) -> RetrievalMatch:
    chunk = Chunk(
        text=f"{label}{_FILLER}",
        source_name=source,
        source_type=SourceType.DOCUMENT,
        ordinal_index=order,
        total_chunks_in_source=10,
    )
    return RetrievalMatch(chunk=chunk, score=score, search_order=order)


def test_simple_question_over_two_sources_takes_two_per_source() -> None:
    matches = [
        _match("a.pdf", 0.95, "a1", 0),
        _match("b.pdf", 0.93, "b1", 1),
        _match("a.pdf", 0.90, "a2", 2),
        _match("a.pdf", 0.85, "a3", 3),
        _match("b.pdf", 0.80, "b2", 4),
        _match("b.pdf", 0.70, "b3", 5),
    ]

    selection = DiverseContextSelector().select("What is X?", matches)

    assert selection.simple is True
    assert selection.target_chunks == 5
    assert selection.quota == 2
    assert [m.text.split()[0] for m in selection.matches] == ["a1", "b1", "a2", "b2"]
    scores = [m.score for m in selection.matches]
    assert scores == sorted(scores, reverse=True)


def test_complex_question_backfills_without_per_source_fairness() -> None:
    matches = [_match("big.pdf", 0.99 - i * 0.01, f"big{i}", i) for i in range(12)]
    matches.append(_match("small.pdf", 0.10, "small0", 12))

    selection = DiverseContextSelector().select(
        "Compare the retention rules across all documents", matches
    )

    assert selection.simple is False
    assert selection.target_chunks == 10
    assert selection.quota == 5
    assert len(selection.matches) == 10
    sources = [m.source_name for m in selection.matches]
    assert sources.count("small.pdf") == 1
    assert sources.count("big.pdf") == 9


def test_complex_question_returns_all_distinct_matches_when_pool_is_small() -> None:
    matches = [_match("a.pdf", 0.9 - i * 0.1, f"a{i}", i) for i in range(3)]
    matches += [_match("b.pdf", 0.85 - i * 0.1, f"b{i}", i + 3) for i in range(3)]

    selection = DiverseContextSelector().select("Please analyze the two reports", matches)

    assert len(selection.matches) == 6


def test_truncation_drops_lowest_scored_source_when_quota_overshoots() -> None:
    matches = [_match(f"doc{i}.pdf", 0.9 - i * 0.1, f"d{i}", i) for i in range(6)]

    selection = DiverseContextSelector().select("Who owns billing?", matches)

    assert selection.quota == 1
    assert len(selection.matches) == 5
    assert "doc5.pdf" not in [m.source_name for m in selection.matches]


def test_normalization_collapses_case_and_whitespace_variants() -> None:
    assert normalize_source_name("Doc.PDF ") == "doc.pdf"
    assert normalize_source_name(normalize_source_name(" Doc.PDF ")) == "doc.pdf"

    groups = group_by_source([_match("Doc.PDF ", 0.9, "x1"), _match("doc.pdf", 0.8, "x2")])

    assert list(groups) == ["doc.pdf"]
    assert groups["doc.pdf"].display_name == "Doc.PDF"
    assert len(groups["doc.pdf"].matches) == 2


def test_short_and_duplicate_matches_are_dropped() -> None:
    short = RetrievalMatch(
        chunk=Chunk("too short", "a.pdf", SourceType.DOCUMENT, 0, 1), score=0.99
    )
    original = _match("a.pdf", 0.9, "same", 1)
    duplicate = _match("A.pdf", 0.8, "same", 2)

    selection = DiverseContextSelector().select("What is X?", [short, original, duplicate])

    assert len(selection.matches) == 1
    assert selection.matches[0].score == 0.9


def test_source_filter_is_bidirectional_substring_match() -> None:
    assert matches_source_filter("Annual Report 2024.pdf", ["report"])
    assert matches_source_filter("report.pdf", ["Report.pdf (final)"])
    assert matches_source_filter("report", ["Report.pdf"])
    assert not matches_source_filter("budget.xlsx", ["report"])

    matches = [_match("Annual Report.pdf", 0.9, "r1"), _match("budget.pdf", 0.95, "b1")]
    selection = DiverseContextSelector().select(
        "What is X?", matches, source_filter=["annual report"]
    )

    assert [m.source_name for m in selection.matches] == ["Annual Report.pdf"]


def test_complexity_and_target_are_deterministic() -> None:
    config = RetrievalConfig()

    assert is_simple_question("What is X?")
    assert not is_simple_question("Can you ANALYZE this?")
    assert not is_simple_question("x" * 50)
    assert compute_target_chunks(True, config) == 5
    assert compute_target_chunks(False, config) == 10
    tight = RetrievalConfig(max_context_tokens=5000, avg_tokens_per_chunk=1500)
    assert compute_target_chunks(True, tight) == 3
    assert compute_target_chunks(False, tight) == 3


def test_empty_pool_yields_empty_selection() -> None:
    selection = DiverseContextSelector().select("What is X?", [])

    assert selection.matches == []
    assert selection.target_chunks == 5
