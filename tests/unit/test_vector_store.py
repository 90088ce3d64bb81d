import pytest

from knowledge_qa.ingest.embedder import HashingEmbedder
from knowledge_qa.retrieval.vector_store import FaissVectorCollection, InMemoryVectorCollection
from knowledge_qa.types import Chunk, IndexedVector, SourceType, TimeRange


def _vector(vector_id: str, text: str, source: str, document_id: str | None = None) -> IndexedVector:
    chunk = Chunk(
        text=text,
        source_name=source,
        source_type=SourceType.AUDIO,
        ordinal_index=0,
        total_chunks_in_source=1,
        provenance=TimeRange(start_time=12.0, end_time=47.5),
    )
    return IndexedVector(
        id=vector_id,
        embedding=HashingEmbedder().embed(text),
        chunk=chunk,
        document_id=document_id,
    )


def test_upserted_chunk_is_retrievable_by_its_own_embedding() -> None:
    collection = InMemoryVectorCollection()
    target = _vector("v1", "Quarterly revenue grew twelve percent in the north region.", "call.mp3")
    collection.upsert([target, _vector("v2", "The cafeteria menu changes on Mondays.", "memo.txt")])

    hits = collection.query(target.embedding, top_k=2)

    assert hits[0].id == "v1"
    assert hits[0].score > 0.99
    assert hits[0].metadata["source"] == "call.mp3"
    assert hits[0].metadata["start_time"] == pytest.approx(12.0)
    assert hits[0].metadata["end_time"] == pytest.approx(47.5)


def test_query_filter_accepts_membership_lists() -> None:
    collection = InMemoryVectorCollection()
    collection.upsert(
        [
            _vector("v1", "alpha text about retention", "a.mp3", document_id="doc-a"),
            _vector("v2", "beta text about retention", "b.mp3", document_id="doc-b"),
            _vector("v3", "gamma text about retention", "c.mp3", document_id="doc-c"),
        ]
    )
    query = HashingEmbedder().embed("text about retention")

    hits = collection.query(query, top_k=10, metadata_filter={"document_id": ["doc-a", "doc-c"]})

    assert sorted(hit.id for hit in hits) == ["v1", "v3"]


def test_delete_source_matches_normalized_name() -> None:
    collection = InMemoryVectorCollection()
    collection.upsert(
        [
            _vector("v1", "first chunk", "Call.MP3"),
            _vector("v2", "second chunk", "call.mp3 "),
            _vector("v3", "other chunk", "memo.txt"),
        ]
    )

    assert collection.delete_source("call.mp3") == 2
    assert len(collection) == 1
    assert collection.delete_source("call.mp3") == 0


def test_query_can_omit_metadata() -> None:
    collection = InMemoryVectorCollection()
    vector = _vector("v1", "some text", "a.mp3")
    collection.upsert([vector])

    hits = collection.query(vector.embedding, top_k=1, include_metadata=False)

    assert hits[0].metadata == {}


def test_faiss_round_trip_scores_own_embedding_highest() -> None:
    collection = FaissVectorCollection()
    target = _vector("v1", "Quarterly revenue grew twelve percent in the north region.", "call.mp3")
    collection.upsert([target, _vector("v2", "The cafeteria menu changes on Mondays.", "memo.txt")])

    hits = collection.query(target.embedding, top_k=2)

    assert hits[0].id == "v1"
    assert hits[0].score > 0.99
    assert hits[0].metadata["source"] == "call.mp3"
    assert hits[0].metadata["start_time"] == pytest.approx(12.0)
    assert "_vector_id" not in hits[0].metadata


def test_faiss_upsert_overwrites_by_id() -> None:
    collection = FaissVectorCollection()
    collection.upsert([_vector("v1", "original wording of the chunk", "a.mp3")])
    replacement = _vector("v1", "rewritten wording of the chunk", "b.mp3")

    collection.upsert([replacement])
    hits = collection.query(replacement.embedding, top_k=5)

    assert len(collection) == 1
    assert [hit.id for hit in hits] == ["v1"]
    assert hits[0].metadata["text"] == "rewritten wording of the chunk"
    assert collection.delete_source("a.mp3") == 0
    assert collection.delete_source("b.mp3") == 1


def test_faiss_query_filter_accepts_membership_lists() -> None:
    collection = FaissVectorCollection()
    collection.upsert(
        [
            _vector("v1", "alpha text about retention", "a.mp3", document_id="doc-a"),
            _vector("v2", "beta text about retention", "b.mp3", document_id="doc-b"),
            _vector("v3", "gamma text about retention", "c.mp3", document_id="doc-c"),
        ]
    )
    query = HashingEmbedder().embed("text about retention")

    hits = collection.query(query, top_k=10, metadata_filter={"document_id": ["doc-a", "doc-c"]})

    assert sorted(hit.id for hit in hits) == ["v1", "v3"]


def test_faiss_delete_source_matches_normalized_name() -> None:
    collection = FaissVectorCollection()
    collection.upsert(
        [
            _vector("v1", "first chunk", "Call.MP3"),
            _vector("v2", "second chunk", "call.mp3 "),
            _vector("v3", "other chunk", "memo.txt"),
        ]
    )

    assert collection.delete_source("call.mp3") == 2
    assert len(collection) == 1
    assert [hit.id for hit in collection.query(HashingEmbedder().embed("chunk"), top_k=5)] == ["v3"]
    assert collection.delete_source("call.mp3") == 0
