from typing import Any

from knowledge_qa.ingest.indexer import Indexer
from knowledge_qa.retrieval.query_expansion import IdentityQueryExpander, KeywordQueryExpander
from knowledge_qa.retrieval.retriever import DiverseContextRetriever, RetrievalFilters
from knowledge_qa.retrieval.vector_store import InMemoryVectorCollection
from knowledge_qa.types import Chunk, QueryMatch, SourceType, UrlRef


class _SpyCollection(InMemoryVectorCollection):
    def __init__(self) -> None:
        super().__init__()
        self.queries: list[tuple[int, dict[str, Any] | None]] = []

    def query(
        self,
        embedding: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> list[QueryMatch]:
        self.queries.append((top_k, metadata_filter))
        return super().query(embedding, top_k, metadata_filter, include_metadata)


def _web_chunks(source: str, url: str, count: int) -> list[Chunk]:
    return [
        Chunk(
            text=f"{source} paragraph {i}: refunds are processed within fourteen business days.",
            source_name=source,
            source_type=SourceType.WEB,
            ordinal_index=i,
            total_chunks_in_source=count,
            provenance=UrlRef(url=url),
        )
        for i in range(count)
    ]


def _populated(embedder) -> _SpyCollection:
    collection = _SpyCollection()
    indexer = Indexer()
    faq = _web_chunks("Refund FAQ", "https://shop.example/faq", 3)
    terms = _web_chunks("Terms", "https://shop.example/terms", 3)
    indexer.index(faq, embedder, collection, document_id="faq")
    indexer.index(terms, embedder, collection, document_id="terms")
    return collection


def test_retrieve_rebuilds_chunks_with_provenance(embedder) -> None:
    collection = _populated(embedder)
    retriever = DiverseContextRetriever(expander=IdentityQueryExpander())

    matches = retriever.retrieve("How fast are refunds?", None, embedder, collection)

    assert len(matches) == 4
    assert {match.source_name for match in matches} == {"Refund FAQ", "Terms"}
    assert all(isinstance(match.chunk.provenance, UrlRef) for match in matches)
    assert {match.document_id for match in matches} == {"faq", "terms"}
    assert collection.queries == [(15, None)]


def test_source_name_filter_widens_the_search_pool(embedder) -> None:
    collection = _populated(embedder)
    retriever = DiverseContextRetriever()

    matches = retriever.retrieve(
        "How fast are refunds?", RetrievalFilters(source_names=["refund faq"]), embedder, collection
    )

    assert collection.queries[-1] == (30, None)
    assert {match.source_name for match in matches} == {"Refund FAQ"}


def test_document_id_filter_is_pushed_down(embedder) -> None:
    collection = _populated(embedder)
    retriever = DiverseContextRetriever()

    matches = retriever.retrieve(
        "How fast are refunds?", RetrievalFilters(document_ids=["terms"]), embedder, collection
    )

    assert collection.queries[-1] == (15, {"document_id": ["terms"]})
    assert {match.source_name for match in matches} == {"Terms"}


def test_keyword_expansion_appends_first_five_content_words() -> None:
    expander = KeywordQueryExpander()

    assert expander.expand("What is X?") == "What is X?"
    assert (
        expander.expand("How do refunds interact with store credit and gift cards today?")
        == "How do refunds interact with store credit and gift cards today? "
        "refunds interact store credit gift"
    )
