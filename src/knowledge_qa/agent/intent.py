"""Keyword-based question intent classification."""

from __future__ import annotations

from knowledge_qa.types import QuestionIntent

META_SOURCE_TRIGGERS: tuple[str, ...] = (
    "come from",
    "comes from",
    "came from",
    "coming from",
    "where is this from",
    "where did you find",
    "where did you get",
    "which document",
    "which source",
    "what source",
    "which file",
)

SYNTHESIS_TRIGGERS: tuple[str, ...] = (
    "summarize",
    "summarise",
    "summary",
    "analyze",
    "analyse",
    "describe",
    "overview",
    "what is this",
    "tell me about",
)

WEB_HINT_TRIGGERS: tuple[str, ...] = ("link", "url", "webpage", "web page", "website")
MEDIA_HINT_TRIGGERS: tuple[str, ...] = ("video", "audio", "recording", "podcast", "transcript")


def is_meta_question(question: str) -> bool:
    lowered = question.lower()
    return any(trigger in lowered for trigger in META_SOURCE_TRIGGERS)


def is_synthesis_task(question: str) -> bool:
    lowered = question.lower()
    return any(trigger in lowered for trigger in SYNTHESIS_TRIGGERS)


def classify(question: str) -> QuestionIntent:
    """Meta-source triggers win over synthesis triggers; default is factual."""

    if is_meta_question(question):
        return QuestionIntent.META_SOURCE
    if is_synthesis_task(question):
        return QuestionIntent.SYNTHESIS
    return QuestionIntent.FACTUAL


def mentions_web(question: str) -> bool:
    lowered = question.lower()
    return any(trigger in lowered for trigger in WEB_HINT_TRIGGERS)


def mentions_media(question: str) -> bool:
    lowered = question.lower()
    return any(trigger in lowered for trigger in MEDIA_HINT_TRIGGERS)
