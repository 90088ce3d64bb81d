"""Diverse-context selection over raw similarity-search hits."""

from __future__ import annotations

from dataclasses import dataclass, field

from knowledge_qa.config import RetrievalConfig
from knowledge_qa.types import RetrievalMatch, SourceGroup

# Any of these makes a question "complex" regardless of its length.
COMPLEXITY_TRIGGERS: tuple[str, ...] = ("compare", "analyze", "all documents")


def normalize_source_name(name: str) -> str:
    return name.strip().lower()


def is_simple_question(question: str, max_chars: int = 50) -> bool:
    lowered = question.lower()
    return len(question) < max_chars and not any(
        trigger in lowered for trigger in COMPLEXITY_TRIGGERS
    )


def compute_target_chunks(simple: bool, config: RetrievalConfig) -> int:
    max_chunks = config.max_context_tokens // config.avg_tokens_per_chunk
    cap = config.simple_max_chunks if simple else config.complex_max_chunks
    return max(1, min(cap, max_chunks))


def matches_source_filter(source_name: str, filter_names: list[str]) -> bool:
    """Bidirectional substring match on normalized names."""

    source = normalize_source_name(source_name)
    for name in filter_names:
        wanted = normalize_source_name(name)
        if wanted and (wanted == source or wanted in source or source in wanted):
            return True
    return False


def group_by_source(matches: list[RetrievalMatch]) -> dict[str, SourceGroup]:
    groups: dict[str, SourceGroup] = {}
    for match in matches:
        key = normalize_source_name(match.source_name)
        group = groups.get(key)
        if group is None:
            group = SourceGroup(key=key, display_name=match.source_name.strip())
            groups[key] = group
        group.matches.append(match)
    return groups


@dataclass(slots=True)
class ContextSelection:
    """Outcome of one selection pass, kept for prompt assembly and tests."""

    matches: list[RetrievalMatch]
    groups: dict[str, SourceGroup] = field(default_factory=dict)
    simple: bool = True
    target_chunks: int = 0
    quota: int = 0

    @property
    def display_names(self) -> list[str]:
        return [group.display_name for group in self.groups.values()]


class DiverseContextSelector:
    """Turns nearest-neighbor hits into a bounded, source-balanced context.

    Selection process:
    1. Drop hits with missing or trivially short text, then apply the
       optional fuzzy source-name filter.
    2. Group survivors by normalized source name.
    3. Classify the question as simple or complex and derive
       `target_chunks` from the context budget.
    4. Give every source a quota of its best hits:
       `max(floor_share, target_chunks // num_sources)`.
    5. For complex questions only, backfill from the global score order
       until `target_chunks` is reached. Backfill ignores per-source
       fairness; relevance wins once every source has its floor.
    6. Sort by score (ties by search order) and truncate to
       `target_chunks`.
    """

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()

    def select(
        self,
        question: str,
        matches: list[RetrievalMatch],
        *,
        source_filter: list[str] | None = None,
    ) -> ContextSelection:
        survivors = self._usable(matches, source_filter)
        simple = is_simple_question(question, self.config.simple_question_max_chars)
        target = compute_target_chunks(simple, self.config)
        if not survivors:
            return ContextSelection(matches=[], simple=simple, target_chunks=target)

        groups = group_by_source(survivors)
        floor_share = (
            self.config.simple_floor_share if simple else self.config.complex_floor_share
        )
        quota = max(floor_share, target // len(groups))

        selected: list[RetrievalMatch] = []
        for group in groups.values():
            ranked = sorted(group.matches, key=_rank_key)
            selected.extend(ranked[:quota])

        if not simple and len(selected) < target:
            taken = {_identity(match) for match in selected}
            for match in sorted(survivors, key=_rank_key):
                if len(selected) >= target:
                    break
                if _identity(match) in taken:
                    continue
                selected.append(match)
                taken.add(_identity(match))

        final = sorted(selected, key=_rank_key)[:target]
        return ContextSelection(
            matches=final,
            groups=groups,
            simple=simple,
            target_chunks=target,
            quota=quota,
        )

    def _usable(
        self, matches: list[RetrievalMatch], source_filter: list[str] | None
    ) -> list[RetrievalMatch]:
        filter_names = [name for name in source_filter or [] if name.strip()]
        seen: set[tuple[str, str]] = set()
        usable: list[RetrievalMatch] = []
        for match in matches:
            if not match.text or len(match.text.strip()) < self.config.min_match_chars:
                continue
            if filter_names and not matches_source_filter(match.source_name, filter_names):
                continue
            identity = _identity(match)
            if identity in seen:
                continue
            seen.add(identity)
            usable.append(match)
        return usable


def _rank_key(match: RetrievalMatch) -> tuple[float, int]:
    return (-match.score, match.search_order)


def _identity(match: RetrievalMatch) -> tuple[str, str]:
    return (match.text, normalize_source_name(match.source_name))
