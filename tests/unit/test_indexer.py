import pytest

from knowledge_qa.config import IndexingConfig
from knowledge_qa.errors import UpstreamProviderError
from knowledge_qa.ingest.indexer import Indexer, vector_id_prefix
from knowledge_qa.retrieval.vector_store import InMemoryVectorCollection
from knowledge_qa.types import Chunk, SourceType


def _chunks(count: int, source: str = "handbook.pdf") -> list[Chunk]:
    return [
        Chunk(
            text=f"Section {i:03d} of the handbook describes onboarding step {i}.",
            source_name=source,
            source_type=SourceType.DOCUMENT,
            ordinal_index=i,
            total_chunks_in_source=count,
        )
        for i in range(count)
    ]


def test_index_embeds_every_chunk_and_upserts_in_batches(embedder) -> None:
    collection = InMemoryVectorCollection()
    indexer = Indexer(IndexingConfig(upsert_batch_size=100, embed_concurrency=4))

    ids = indexer.index(_chunks(250), embedder, collection, document_id="doc-1")

    assert len(ids) == 250
    assert len(set(ids)) == 250
    assert embedder.calls == 250
    assert collection.upsert_calls == 3
    assert len(collection) == 250
    assert ids[0].startswith("document-") and ids[0].endswith("-chunk-0000")


def test_one_failed_embedding_aborts_the_whole_source(embedder) -> None:
    embedder.fail_on = "Section 007"
    collection = InMemoryVectorCollection()

    with pytest.raises(UpstreamProviderError) as excinfo:
        Indexer().index(_chunks(20), embedder, collection)

    assert excinfo.value.operation == "embedding"
    assert collection.upsert_calls == 0
    assert len(collection) == 0


def test_reindexing_a_source_overwrites_its_vectors(embedder) -> None:
    collection = InMemoryVectorCollection()
    indexer = Indexer()

    first = indexer.index(_chunks(5, "Guide.pdf"), embedder, collection)
    second = indexer.index(_chunks(5, " guide.pdf"), embedder, collection)

    assert first == second
    assert len(collection) == 5


def test_vector_id_prefix_prefers_document_id() -> None:
    chunk = _chunks(1)[0]

    assert vector_id_prefix(chunk, "doc-1") != vector_id_prefix(chunk)
    assert vector_id_prefix(chunk, "doc-1") == vector_id_prefix(_chunks(1, "other.pdf")[0], "doc-1")


def test_empty_chunk_list_is_a_no_op(embedder) -> None:
    collection = InMemoryVectorCollection()

    assert Indexer().index([], embedder, collection) == []
    assert collection.upsert_calls == 0
