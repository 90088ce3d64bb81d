"""Question retriever with diverse-context selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from knowledge_qa.config import RetrievalConfig
from knowledge_qa.errors import UpstreamProviderError
from knowledge_qa.ingest.embedder import Embedder
from knowledge_qa.retrieval.query_expansion import KeywordQueryExpander, QueryExpander
from knowledge_qa.retrieval.selection import ContextSelection, DiverseContextSelector
from knowledge_qa.retrieval.vector_store import VectorCollection
from knowledge_qa.types import Chunk, RetrievalMatch


@dataclass(slots=True)
class RetrievalFilters:
    """Optional narrowing of a question to specific sources.

    `source_names` is matched fuzzily after search; `document_ids` is an
    exact filter pushed down to the vector collection.
    """

    source_names: list[str] = field(default_factory=list)
    document_ids: list[str] = field(default_factory=list)

    def native_filter(self) -> dict[str, Any] | None:
        if self.document_ids:
            return {"document_id": list(self.document_ids)}
        return None


class DiverseContextRetriever:
    """Embeds a question, searches the collection and selects context.

    The search pool is enlarged when a source-name filter is present,
    because that filter is applied after search and would otherwise leave
    too few candidates.
    """

    def __init__(
        self,
        config: RetrievalConfig | None = None,
        expander: QueryExpander | None = None,
        selector: DiverseContextSelector | None = None,
    ) -> None:
        self.config = config or RetrievalConfig()
        self.expander = expander or KeywordQueryExpander()
        self.selector = selector or DiverseContextSelector(self.config)

    def retrieve(
        self,
        question: str,
        filters: RetrievalFilters | None,
        embedder: Embedder,
        collection: VectorCollection,
    ) -> list[RetrievalMatch]:
        return self.retrieve_selection(question, filters, embedder, collection).matches

    def retrieve_selection(
        self,
        question: str,
        filters: RetrievalFilters | None,
        embedder: Embedder,
        collection: VectorCollection,
    ) -> ContextSelection:
        filters = filters or RetrievalFilters()
        expanded = self.expander.expand(question)
        try:
            query_embedding = embedder.embed(expanded)
        except Exception as exc:
            raise UpstreamProviderError("embedding", str(exc)) from exc

        top_k = self.config.filtered_top_k if filters.source_names else self.config.top_k
        hits = collection.query(
            query_embedding,
            top_k,
            metadata_filter=filters.native_filter(),
            include_metadata=True,
        )
        matches = [
            RetrievalMatch(
                chunk=Chunk.from_metadata(hit.metadata),
                score=hit.score,
                search_order=order,
                document_id=hit.metadata.get("document_id"),
            )
            for order, hit in enumerate(hits)
        ]

        selection = self.selector.select(
            question, matches, source_filter=filters.source_names or None
        )
        logger.info(
            f"[Retriever] {len(hits)} hits -> {len(selection.matches)} selected "
            f"from {len(selection.groups)} source(s) "
            f"(simple={selection.simple}, target={selection.target_chunks}, "
            f"quota={selection.quota})"
        )
        return selection
