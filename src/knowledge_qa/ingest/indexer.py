"""Concurrent chunk embedding and batched vector upsert."""

from __future__ import annotations

from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from hashlib import sha1

from loguru import logger

from knowledge_qa.config import IndexingConfig
from knowledge_qa.errors import UpstreamProviderError
from knowledge_qa.ingest.embedder import Embedder
from knowledge_qa.retrieval.selection import normalize_source_name
from knowledge_qa.retrieval.vector_store import VectorCollection
from knowledge_qa.types import Chunk, IndexedVector


def vector_id_prefix(chunk: Chunk, document_id: str | None = None) -> str:
    """Stable per-source id prefix, so re-ingesting a source overwrites it."""

    key = document_id or normalize_source_name(chunk.source_name)
    digest = sha1(key.encode("utf-8")).hexdigest()[:16]
    return f"{chunk.source_type.value}-{digest}"


class Indexer:
    """Embeds chunks concurrently and upserts them as one set.

    Every chunk of a source is embedded before anything is written. If one
    embedding fails, nothing is upserted and `UpstreamProviderError` is
    raised, so a source is never left half searchable.
    """

    def __init__(self, config: IndexingConfig | None = None) -> None:
        self.config = config or IndexingConfig()

    def index(
        self,
        chunks: list[Chunk],
        embedder: Embedder,
        collection: VectorCollection,
        *,
        document_id: str | None = None,
    ) -> list[str]:
        """Embed and upsert chunks; returns the written vector ids."""

        if not chunks:
            return []

        embeddings = self._embed_all(chunks, embedder)
        prefix = vector_id_prefix(chunks[0], document_id)
        vectors = [
            IndexedVector(
                id=f"{prefix}-chunk-{chunk.ordinal_index:04d}",
                embedding=embedding,
                chunk=chunk,
                document_id=document_id,
            )
            for chunk, embedding in zip(chunks, embeddings, strict=True)
        ]

        batch_size = self.config.upsert_batch_size
        for start in range(0, len(vectors), batch_size):
            collection.upsert(vectors[start : start + batch_size])

        logger.info(
            f"[Indexer] Upserted {len(vectors)} vectors for {chunks[0].source_name!r} "
            f"in {(len(vectors) + batch_size - 1) // batch_size} batch(es)"
        )
        return [vector.id for vector in vectors]

    def _embed_all(self, chunks: list[Chunk], embedder: Embedder) -> list[list[float]]:
        workers = min(self.config.embed_concurrency, len(chunks))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(embedder.embed, chunk.text) for chunk in chunks]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()

            for future in futures:
                if future in done and future.exception() is not None:
                    exc = future.exception()
                    logger.error(f"[Indexer] Embedding failed, aborting source: {exc}")
                    raise UpstreamProviderError("embedding", str(exc)) from exc

            return [future.result() for future in futures]
