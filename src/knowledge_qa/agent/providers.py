"""Completion providers and the per-request provider factory."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from loguru import logger

from knowledge_qa.ingest.embedder import Embedder, HashingEmbedder, OpenAIEmbedder
from knowledge_qa.obs.usage import estimate_token_count
from knowledge_qa.types import CompletionResult

_CONTEXT_LINE = re.compile(
    r"^\[(?P<number>\d+)\] From .*?(?: \(URL: [^)]*\))?(?: \[[\d:]+ - [\d:]+\])?: (?P<body>.+)$"
)


class CompletionProvider(ABC):
    """Uniform chat-completion capability shared by every backing provider."""

    name: str = "provider"

    @abstractmethod
    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> CompletionResult:
        """Return the completion text and the total tokens consumed."""


class OpenAICompletionProvider(CompletionProvider):
    """OpenAI chat completions via the LangChain integration."""

    name = "openai"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> CompletionResult:
        from langchain_core.messages import HumanMessage, SystemMessage
        from langchain_openai import ChatOpenAI

        llm = ChatOpenAI(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=self._api_key,
        )
        response = llm.invoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        )
        usage = getattr(response, "usage_metadata", None) or {}
        tokens = int(usage.get("total_tokens", 0))
        logger.debug(f"[OpenAICompletion] {model} | tokens={tokens}")
        return CompletionResult(text=str(response.content), tokens_used=tokens, model=model)


class AnthropicCompletionProvider(CompletionProvider):
    """Anthropic messages API; the system prompt travels as its own parameter."""

    name = "anthropic"

    def __init__(self, api_key: str) -> None:
        from anthropic import Anthropic  # lazy import

        self._client = Anthropic(api_key=api_key)

    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> CompletionResult:
        response = self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        text = response.content[0].text if response.content else ""
        tokens = response.usage.input_tokens + response.usage.output_tokens
        logger.debug(f"[AnthropicCompletion] {model} | tokens={tokens}")
        return CompletionResult(text=text, tokens_used=tokens, model=model)


class ExtractiveCompletionProvider(CompletionProvider):
    """Deterministic provider that answers by quoting the numbered context.

    Used offline and in tests. It keeps the citation contract of the real
    providers: every line it emits ends with the `[n]` of the fragment it
    quotes.
    """

    name = "extractive"

    def __init__(self, max_fragments: int = 3, max_chars: int = 240) -> None:
        self.max_fragments = max_fragments
        self.max_chars = max_chars

    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> CompletionResult:
        lines: list[str] = []
        for raw in user_prompt.splitlines():
            match = _CONTEXT_LINE.match(raw.strip())
            if not match:
                continue
            body = match.group("body").strip()
            if len(body) > self.max_chars:
                body = body[: self.max_chars - 3].rstrip() + "..."
            lines.append(f"{body} [{match.group('number')}]")
            if len(lines) >= self.max_fragments:
                break

        if lines:
            text = "\n".join(lines)
        else:
            text = "The provided sources do not contain enough information to answer."
        tokens = estimate_token_count(system_prompt + user_prompt) + estimate_token_count(text)
        return CompletionResult(text=text, tokens_used=tokens, model=model)


@dataclass(slots=True)
class ProviderBundle:
    """Embedding and completion capabilities bound to one resolved key."""

    embedder: Embedder
    completer: CompletionProvider


class ProviderFactory:
    """Builds provider implementations from a resolved key.

    `provider` picks the completion backend. Embeddings always come from
    OpenAI except offline, where the hashing embedder is used. With the
    Anthropic backend the embeddings use `embedding_key` (the server's
    OpenAI key) because the resolved key is an Anthropic key.
    """

    def __init__(
        self,
        provider: str = "openai",
        *,
        embedding_model: str = "text-embedding-3-large",
        embedding_key: str | None = None,
        offline_dimension: int = 256,
    ) -> None:
        if provider not in {"openai", "anthropic", "offline"}:
            raise ValueError(f"Unsupported provider: {provider}")
        self.provider = provider
        self.embedding_model = embedding_model
        self.embedding_key = embedding_key
        self.offline_dimension = offline_dimension

    def build(self, resolved_key: str) -> ProviderBundle:
        if self.provider == "offline":
            return ProviderBundle(
                embedder=HashingEmbedder(self.offline_dimension),
                completer=ExtractiveCompletionProvider(),
            )
        if self.provider == "anthropic":
            if self.embedding_key:
                embedder: Embedder = OpenAIEmbedder(self.embedding_key, self.embedding_model)
            else:
                logger.warning(
                    "[Providers] No OpenAI key for embeddings, using hashing embedder"
                )
                embedder = HashingEmbedder(self.offline_dimension)
            return ProviderBundle(
                embedder=embedder,
                completer=AnthropicCompletionProvider(resolved_key),
            )
        return ProviderBundle(
            embedder=OpenAIEmbedder(resolved_key, self.embedding_model),
            completer=OpenAICompletionProvider(resolved_key),
        )
