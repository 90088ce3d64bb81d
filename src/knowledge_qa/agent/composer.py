"""Grounded prompt assembly from selected retrieval matches."""

from __future__ import annotations

from knowledge_qa.agent.intent import mentions_media, mentions_web
from knowledge_qa.agent.prompts import SYSTEM_PROMPTS, USER_PROMPT_TEMPLATE
from knowledge_qa.config import PromptConfig
from knowledge_qa.ingest.parser import format_timestamp
from knowledge_qa.retrieval.selection import normalize_source_name
from knowledge_qa.types import (
    ComposedPrompt,
    QuestionIntent,
    RetrievalMatch,
    SourceType,
    TimeRange,
    UrlRef,
)

_MEDIA_TYPES = (SourceType.AUDIO, SourceType.VIDEO)


def render_match(index: int, match: RetrievalMatch) -> str:
    """Render one context entry as `[n] From <name> ...: <text>`."""

    header = f"[{index}] From {match.source_name.strip()}"
    provenance = match.chunk.provenance
    if match.source_type is SourceType.WEB and isinstance(provenance, UrlRef):
        header += f" (URL: {provenance.url})"
    if match.source_type in _MEDIA_TYPES and isinstance(provenance, TimeRange):
        header += (
            f" [{format_timestamp(provenance.start_time)} - "
            f"{format_timestamp(provenance.end_time)}]"
        )
    return f"{header}: {match.text}"


def render_context(matches: list[RetrievalMatch]) -> str:
    return "\n\n".join(
        render_match(index, match) for index, match in enumerate(matches, start=1)
    )


def summarize_sources(matches: list[RetrievalMatch], question: str) -> str:
    names: list[str] = []
    seen: set[str] = set()
    types: set[SourceType] = set()
    for match in matches:
        key = normalize_source_name(match.source_name)
        types.add(match.source_type)
        if key not in seen:
            seen.add(key)
            names.append(match.source_name.strip())

    if len(names) > 1:
        summary = f"You have context from {len(names)} different sources: {', '.join(names)}."
    else:
        summary = f"You have context from 1 source: {names[0]}." if names else ""

    hints: list[str] = []
    if SourceType.WEB in types and mentions_web(question):
        hints.append("The question refers to a web page; focus on the web source.")
    if types.intersection(_MEDIA_TYPES) and mentions_media(question):
        hints.append("The question refers to a recording; focus on the audio or video source.")
    return " ".join([summary, *hints]).strip()


class PromptComposer:
    """Builds the system/user prompt pair for one intent.

    Citation numbers in the rendered context are 1-based positions in
    `matches`, the same numbering returned with the answer's sources.
    """

    def __init__(self, config: PromptConfig | None = None) -> None:
        self.config = config or PromptConfig()

    def temperature_for(self, intent: QuestionIntent) -> float:
        if intent is QuestionIntent.SYNTHESIS:
            return self.config.synthesis_temperature
        return self.config.factual_temperature

    def compose(
        self, intent: QuestionIntent, matches: list[RetrievalMatch], question: str
    ) -> ComposedPrompt:
        summary = summarize_sources(matches, question)
        user_prompt = USER_PROMPT_TEMPLATE.format(
            source_summary=f"{summary}\n" if summary else "",
            context=render_context(matches),
            question=question.strip(),
        )
        return ComposedPrompt(
            intent=intent,
            system_prompt=SYSTEM_PROMPTS[intent],
            user_prompt=user_prompt,
            temperature=self.temperature_for(intent),
        )
