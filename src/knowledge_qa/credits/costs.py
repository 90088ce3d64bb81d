"""Credit actions and their unit costs."""

from __future__ import annotations

from enum import Enum
from typing import Mapping


class CreditAction(str, Enum):
    ASK_GPT35 = "ask_gpt35"
    ASK_GPT4 = "ask_gpt4"
    ASK_GPT4O = "ask_gpt4o"
    ASK_CLAUDE = "ask_claude"
    UPLOAD_DOCUMENT_PAGE = "upload_document_page"
    PROCESS_YOUTUBE = "process_youtube"
    PROCESS_WEB = "process_web"
    TRANSCRIBE_AUDIO_MINUTE = "transcribe_audio_minute"
    EXPORT_INSIGHT = "export_insight"


DEFAULT_CREDIT_COSTS: dict[str, int] = {
    CreditAction.ASK_GPT35.value: 1,
    CreditAction.ASK_GPT4.value: 10,
    CreditAction.ASK_GPT4O.value: 5,
    CreditAction.ASK_CLAUDE.value: 5,
    CreditAction.UPLOAD_DOCUMENT_PAGE.value: 1,
    CreditAction.PROCESS_YOUTUBE.value: 2,
    CreditAction.PROCESS_WEB.value: 1,
    CreditAction.TRANSCRIBE_AUDIO_MINUTE.value: 3,
    CreditAction.EXPORT_INSIGHT.value: 0,
}

# Image ingestion goes through a vision model and is billed like a GPT-4o question.
IMAGE_INGEST_ACTION = CreditAction.ASK_GPT4O


def ask_action_for_model(model: str, provider: str = "openai") -> CreditAction:
    """Map a chat model name to the credit action charged for one question."""

    name = model.lower()
    if provider == "anthropic" or name.startswith("claude"):
        return CreditAction.ASK_CLAUDE
    if "gpt-4o" in name:
        return CreditAction.ASK_GPT4O
    if "gpt-4" in name:
        return CreditAction.ASK_GPT4
    return CreditAction.ASK_GPT35


class CreditCostTable:
    """Unit cost lookup with optional per-deployment overrides.

    Unknown actions cost nothing.
    """

    def __init__(self, overrides: Mapping[str, int] | None = None) -> None:
        self._costs = dict(DEFAULT_CREDIT_COSTS)
        for action, cost in (overrides or {}).items():
            if cost < 0:
                raise ValueError(f"Credit cost for {action!r} must be non-negative")
            self._costs[action] = cost

    def cost_of(self, action: CreditAction | str, quantity: int = 1) -> int:
        key = action.value if isinstance(action, CreditAction) else action
        return self._costs.get(key, 0) * max(1, quantity)

    def as_dict(self) -> dict[str, int]:
        return dict(self._costs)
