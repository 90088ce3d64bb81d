"""Question answering: gate -> retrieve -> classify/compose -> complete -> meter."""

from __future__ import annotations

from loguru import logger

from knowledge_qa.agent.composer import PromptComposer
from knowledge_qa.agent.intent import classify
from knowledge_qa.agent.prompts import NO_RELEVANT_INFORMATION_ANSWER
from knowledge_qa.agent.providers import ProviderFactory
from knowledge_qa.config import PromptConfig
from knowledge_qa.credits.costs import ask_action_for_model
from knowledge_qa.credits.resolver import CredentialResolver
from knowledge_qa.errors import NoRelevantContextError, UpstreamProviderError, ValidationError
from knowledge_qa.ingest.embedder import Embedder
from knowledge_qa.ingest.parser import format_timestamp
from knowledge_qa.obs.usage import Timer, UsageStore
from knowledge_qa.retrieval.retriever import DiverseContextRetriever, RetrievalFilters
from knowledge_qa.retrieval.vector_store import VectorCollection
from knowledge_qa.types import (
    AnswerEnvelope,
    CompletionResult,
    CredentialContext,
    RetrievalMatch,
    SourceCitation,
    SourceType,
    TimeRange,
    UrlRef,
)


def build_citations(matches: list[RetrievalMatch]) -> list[SourceCitation]:
    """Citation list numbered like the rendered context."""

    citations: list[SourceCitation] = []
    for number, match in enumerate(matches, start=1):
        provenance = match.chunk.provenance
        timestamp = None
        audio_id = None
        url = None
        if isinstance(provenance, TimeRange):
            timestamp = format_timestamp(provenance.start_time)
            if match.source_type is SourceType.AUDIO:
                audio_id = match.document_id
        elif isinstance(provenance, UrlRef):
            url = provenance.url
        citations.append(
            SourceCitation(
                number=number,
                source=match.source_name.strip(),
                relevance=round(match.score * 100),
                timestamp=timestamp,
                audio_id=audio_id,
                url=url,
            )
        )
    return citations


class QuestionAnswerer:
    """Answers one question against the shared vector collection.

    The credential gate runs before retrieval, so validation, auth and
    credit failures never reach a provider. When nothing relevant is found
    the canned answer is returned, the composer is skipped and nothing is
    charged.
    """

    def __init__(
        self,
        *,
        resolver: CredentialResolver,
        providers: ProviderFactory,
        collection: VectorCollection,
        chat_model: str,
        retriever: DiverseContextRetriever | None = None,
        composer: PromptComposer | None = None,
        prompt_config: PromptConfig | None = None,
        usage_store: UsageStore | None = None,
    ) -> None:
        self._resolver = resolver
        self._providers = providers
        self._collection = collection
        self.chat_model = chat_model
        self._retriever = retriever or DiverseContextRetriever()
        self._prompt_config = prompt_config or PromptConfig()
        self._composer = composer or PromptComposer(self._prompt_config)
        self._usage_store = usage_store

    def ask(
        self,
        question: str,
        *,
        user_id: str | None = None,
        byok_key: str | None = None,
        filters: RetrievalFilters | None = None,
        model: str | None = None,
    ) -> AnswerEnvelope:
        if not question or not question.strip():
            raise ValidationError("Question is required")
        model = model or self.chat_model
        action = ask_action_for_model(model, self._providers.provider)
        context = self._resolver.resolve(action, user_id=user_id, byok_key=byok_key)
        bundle = self._providers.build(context.resolved_key)

        with Timer() as timer:
            try:
                matches = self._retrieve(question, filters, bundle.embedder)
            except NoRelevantContextError:
                logger.info(f"[Answer] No relevant context for {question[:60]!r}")
                return AnswerEnvelope(
                    answer=NO_RELEVANT_INFORMATION_ANSWER,
                    sources=[],
                    mode=context.key_source,
                    credits_used=0 if context.is_metered else None,
                    credits_remaining=(
                        self._resolver.ledger.get_balance(context.user_id)
                        if context.is_metered and context.user_id
                        else None
                    ),
                    team_name=context.team_name,
                )

            intent = classify(question)
            prompt = self._composer.compose(intent, matches, question)
            try:
                completion = bundle.completer.complete(
                    model,
                    prompt.system_prompt,
                    prompt.user_prompt,
                    prompt.temperature,
                    self._prompt_config.max_tokens,
                )
            except Exception as exc:
                logger.error(f"[Answer] Completion failed with {model}: {exc}")
                raise UpstreamProviderError("completion", str(exc)) from exc

        metering = self._resolver.meter(
            context,
            {
                "model": model,
                "tokens_used": completion.tokens_used,
                "sources": len(matches),
            },
        )
        self._record_usage(context, completion, matches, timer.elapsed_ms, metering.charged)

        logger.info(
            f"[Answer] {intent.value} answer from {len(matches)} fragments via "
            f"{context.key_source.value} ({completion.tokens_used} tokens, "
            f"{timer.elapsed_ms:.0f} ms)"
        )
        return AnswerEnvelope(
            answer=completion.text,
            sources=build_citations(matches),
            mode=context.key_source,
            credits_used=metering.charged if context.is_metered else None,
            credits_remaining=metering.balance if context.is_metered else None,
            team_name=context.team_name,
            intent=intent,
        )

    def _retrieve(
        self, question: str, filters: RetrievalFilters | None, embedder: Embedder
    ) -> list[RetrievalMatch]:
        matches = self._retriever.retrieve(question, filters, embedder, self._collection)
        if not matches:
            raise NoRelevantContextError("No relevant context survived filtering")
        return matches

    def _record_usage(
        self,
        context: CredentialContext,
        completion: CompletionResult,
        matches: list[RetrievalMatch],
        latency_ms: float,
        charged: int,
    ) -> None:
        if self._usage_store is None:
            return
        try:
            self._usage_store.create_record(
                operation="ask",
                model=completion.model,
                key_source=context.key_source.value,
                tokens_used=completion.tokens_used,
                latency_ms=latency_ms,
                user_id=context.user_id,
                credits_charged=charged,
                answer=completion.text,
                source_snippets=[match.text for match in matches],
            )
        except Exception as exc:
            logger.warning(f"[Answer] Failed to record usage: {exc}")
