"""Vector collection interfaces and concrete adapters."""

from __future__ import annotations

import threading
from math import sqrt
from typing import Any, Protocol, cast

from knowledge_qa.retrieval.selection import normalize_source_name
from knowledge_qa.types import IndexedVector, QueryMatch

_ID_KEY = "_vector_id"


class VectorCollection(Protocol):
    """Minimal vector collection contract used by the indexer and retriever."""

    def upsert(self, vectors: list[IndexedVector]) -> None:
        """Insert or overwrite vectors by id."""

    def query(
        self,
        embedding: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> list[QueryMatch]:
        """Return up to `top_k` hits, best first."""

    def delete_source(self, source_name: str) -> int:
        """Delete every vector of one source; returns the number removed."""


class InMemoryVectorCollection:
    """Deterministic vector collection used for tests and local prototyping."""

    def __init__(self) -> None:
        self._store: dict[str, IndexedVector] = {}
        self._lock = threading.Lock()
        self.upsert_calls = 0

    def __len__(self) -> int:
        return len(self._store)

    def upsert(self, vectors: list[IndexedVector]) -> None:
        with self._lock:
            self.upsert_calls += 1
            for vector in vectors:
                self._store[vector.id] = vector

    def query(
        self,
        embedding: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> list[QueryMatch]:
        with self._lock:
            candidates = [
                vector
                for vector in self._store.values()
                if _metadata_match(vector.metadata, metadata_filter)
            ]
        ranked = sorted(
            (
                QueryMatch(
                    id=vector.id,
                    score=_cosine_similarity(embedding, vector.embedding),
                    metadata=vector.metadata if include_metadata else {},
                )
                for vector in candidates
            ),
            key=lambda item: item.score,
            reverse=True,
        )
        return ranked[:top_k]

    def delete_source(self, source_name: str) -> int:
        key = normalize_source_name(source_name)
        with self._lock:
            doomed = [
                vector_id
                for vector_id, vector in self._store.items()
                if normalize_source_name(vector.chunk.source_name) == key
            ]
            for vector_id in doomed:
                del self._store[vector_id]
        return len(doomed)


class FaissVectorCollection:
    """FAISS adapter via LangChain community integration.

    This adapter keeps the same contract as `InMemoryVectorCollection` so
    it can be swapped in with minimal code changes.
    """

    def __init__(self) -> None:
        try:
            from langchain_community.vectorstores import FAISS
            from langchain_community.vectorstores.utils import DistanceStrategy
            from langchain_core.embeddings import Embeddings
        except Exception as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError(
                "FAISS dependencies are not available. Install langchain-community/faiss-cpu."
            ) from exc

        class _PrecomputedEmbeddings(Embeddings):
            # Vectors always arrive precomputed; text embedding is never requested.
            def embed_documents(self, texts: list[str]) -> list[list[float]]:
                raise NotImplementedError("embeddings must be supplied by the indexer")

            def embed_query(self, text: str) -> list[float]:
                raise NotImplementedError("embeddings must be supplied by the retriever")

        self._faiss_cls = FAISS
        self._distance_strategy = DistanceStrategy.MAX_INNER_PRODUCT
        self._embeddings = _PrecomputedEmbeddings()
        self._index: Any | None = None
        self._ids_by_source: dict[str, set[str]] = {}

    def upsert(self, vectors: list[IndexedVector]) -> None:
        if not vectors:
            return
        vectors = list({vector.id: vector for vector in vectors}.values())
        ids = [vector.id for vector in vectors]
        if self._index is not None:
            stored = set(self._index.index_to_docstore_id.values())
            existing = [vector_id for vector_id in ids if vector_id in stored]
            if existing:
                self._index.delete(existing)
                for source_ids in self._ids_by_source.values():
                    source_ids.difference_update(existing)

        # Unit vectors make inner product equal to cosine similarity.
        text_embeddings = [
            (vector.chunk.text, _unit(vector.embedding)) for vector in vectors
        ]
        metadatas = [{**vector.metadata, _ID_KEY: vector.id} for vector in vectors]
        if self._index is None:
            self._index = self._faiss_cls.from_embeddings(
                text_embeddings=text_embeddings,
                embedding=self._embeddings,
                metadatas=metadatas,
                ids=ids,
                distance_strategy=self._distance_strategy,
            )
        else:
            self._index.add_embeddings(
                text_embeddings=text_embeddings,
                metadatas=metadatas,
                ids=ids,
            )
        for vector in vectors:
            key = normalize_source_name(vector.chunk.source_name)
            self._ids_by_source.setdefault(key, set()).add(vector.id)

    def query(
        self,
        embedding: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> list[QueryMatch]:
        if self._index is None:
            return []
        docs_and_scores = self._index.similarity_search_with_score_by_vector(
            embedding=_unit(embedding),
            k=top_k,
            filter=(lambda metadata: _metadata_match(metadata, metadata_filter))
            if metadata_filter
            else None,
            # Filtering happens after the FAISS search; scan every vector.
            fetch_k=max(top_k, len(self)),
        )
        results: list[QueryMatch] = []
        for doc, score in docs_and_scores:
            metadata = cast(dict[str, Any], dict(doc.metadata))
            vector_id = str(metadata.pop(_ID_KEY))
            results.append(
                QueryMatch(
                    id=vector_id,
                    score=float(score),
                    metadata=metadata if include_metadata else {},
                )
            )
        return results

    def delete_source(self, source_name: str) -> int:
        ids = self._ids_by_source.pop(normalize_source_name(source_name), set())
        if ids and self._index is not None:
            self._index.delete(list(ids))
        return len(ids)

    def __len__(self) -> int:
        return 0 if self._index is None else int(self._index.index.ntotal)


def _metadata_match(
    metadata: dict[str, Any], metadata_filter: dict[str, Any] | None
) -> bool:
    """Equality per key; a list/tuple/set filter value means membership."""

    if not metadata_filter:
        return True
    for key, value in metadata_filter.items():
        actual = metadata.get(key)
        if isinstance(value, (list, tuple, set, frozenset)):
            if actual not in value:
                return False
        elif actual != value:
            return False
    return True


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


def _unit(vector: list[float]) -> list[float]:
    norm = sqrt(sum(value * value for value in vector))
    if norm == 0:
        return list(vector)
    return [value / norm for value in vector]
