"""Application context assembled once at process start."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from knowledge_qa.agent.answerer import QuestionAnswerer
from knowledge_qa.agent.providers import ProviderFactory
from knowledge_qa.config import (
    ChunkingConfig,
    IndexingConfig,
    PromptConfig,
    RetrievalConfig,
    Settings,
)
from knowledge_qa.credits.costs import CreditCostTable
from knowledge_qa.credits.ledger import (
    CreditLedger,
    InMemoryCreditLedger,
    SqliteCreditLedger,
)
from knowledge_qa.credits.resolver import CredentialResolver
from knowledge_qa.credits.teams import InMemoryTeamDirectory, TeamDirectory
from knowledge_qa.ingest.chunker import SourceAwareChunker
from knowledge_qa.ingest.indexer import Indexer
from knowledge_qa.ingest.pipeline import IngestPipeline
from knowledge_qa.obs.usage import UsageStore
from knowledge_qa.retrieval.retriever import DiverseContextRetriever
from knowledge_qa.retrieval.vector_store import (
    FaissVectorCollection,
    InMemoryVectorCollection,
    VectorCollection,
)


class Authenticator(Protocol):
    def authenticate(self, authorization: str | None) -> str | None:
        """Return the caller's user id, or None when not signed in."""


class StaticTokenAuthenticator:
    """Maps `Bearer <token>` headers to user ids from a fixed table."""

    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        self._tokens = dict(tokens or {})

    def authenticate(self, authorization: str | None) -> str | None:
        if not authorization:
            return None
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return self._tokens.get(token.strip())


@dataclass(slots=True)
class AppContext:
    """Shared collaborators passed by reference into every request."""

    settings: Settings
    collection: VectorCollection
    ledger: CreditLedger
    team_directory: TeamDirectory
    cost_table: CreditCostTable
    providers: ProviderFactory
    usage_store: UsageStore
    authenticator: Authenticator
    resolver: CredentialResolver
    pipeline: IngestPipeline
    answerer: QuestionAnswerer


def build_context(
    settings: Settings | None = None,
    *,
    collection: VectorCollection | None = None,
    ledger: CreditLedger | None = None,
    team_directory: TeamDirectory | None = None,
    providers: ProviderFactory | None = None,
    authenticator: Authenticator | None = None,
    chunking: ChunkingConfig | None = None,
    retrieval: RetrievalConfig | None = None,
    prompt: PromptConfig | None = None,
    indexing: IndexingConfig | None = None,
) -> AppContext:
    """Wire the application from settings; any collaborator can be injected."""

    settings = settings or Settings()

    if collection is None:
        collection = (
            FaissVectorCollection()
            if settings.vector_backend == "faiss"
            else InMemoryVectorCollection()
        )
    if ledger is None:
        ledger = (
            SqliteCreditLedger(settings.ledger_path)
            if settings.ledger_backend == "sqlite"
            else InMemoryCreditLedger()
        )
    team_directory = team_directory or InMemoryTeamDirectory()
    providers = providers or ProviderFactory(
        settings.llm_provider,
        embedding_model=settings.embedding_model,
        embedding_key=settings.openai_api_key,
    )
    authenticator = authenticator or StaticTokenAuthenticator(settings.auth_tokens)

    cost_table = CreditCostTable(settings.credit_cost_overrides)
    usage_store = UsageStore()
    resolver = CredentialResolver(
        team_directory=team_directory,
        ledger=ledger,
        cost_table=cost_table,
        server_key=settings.server_key(),
        provider=providers.provider,
    )
    pipeline = IngestPipeline(
        resolver=resolver,
        providers=providers,
        collection=collection,
        chunker=SourceAwareChunker(chunking),
        indexer=Indexer(indexing),
        usage_store=usage_store,
    )
    answerer = QuestionAnswerer(
        resolver=resolver,
        providers=providers,
        collection=collection,
        chat_model=settings.chat_model,
        retriever=DiverseContextRetriever(retrieval),
        prompt_config=prompt,
        usage_store=usage_store,
    )

    logger.info(
        f"[Context] provider={providers.provider} vectors={type(collection).__name__} "
        f"ledger={type(ledger).__name__} server_key={'yes' if resolver.server_key else 'no'}"
    )
    return AppContext(
        settings=settings,
        collection=collection,
        ledger=ledger,
        team_directory=team_directory,
        cost_table=cost_table,
        providers=providers,
        usage_store=usage_store,
        authenticator=authenticator,
        resolver=resolver,
        pipeline=pipeline,
        answerer=answerer,
    )
