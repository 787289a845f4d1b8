"""Retriever for semantic search over ingested document chunks.

Handles:
- Query embedding generation
- Vector search, optionally scoped to a set of documents
- Similarity threshold filtering
- Chunk record lookup and citation building
"""
from dataclasses import dataclass
from typing import List, Optional

import structlog

from docchat.db import Database
from docchat.models import Source
from docchat.rag.embedder import EmbeddingGateway
from docchat.rag.vector_index import VectorIndexClient

logger = structlog.get_logger()

UNKNOWN_TITLE = "Unknown"
TRUNCATION_MARKER = "..."
CONTEXT_SEPARATOR = "\n\n---\n\n"


@dataclass
class RetrievedChunk:
    """A resolved search hit: its citation plus the full chunk text."""

    source: Source
    content: str


def make_excerpt(content: str, max_chars: int) -> str:
    return content[:max_chars] + TRUNCATION_MARKER


def build_context(results: List[RetrievedChunk]) -> str:
    """Render numbered source blocks with the full chunk content."""
    return CONTEXT_SEPARATOR.join(
        f"[Source {i}] {r.source.document_title}:\n{r.content}"
        for i, r in enumerate(results, 1)
    )


class Retriever:
    """Semantic retriever for the RAG query pipeline."""

    def __init__(
        self,
        db: Database,
        embedder: EmbeddingGateway,
        vector_index: VectorIndexClient,
        index_name: str,
        top_k: int = 10,
        similarity_threshold: float = 0.3,
        excerpt_chars: int = 200,
    ):
        self.db = db
        self.embedder = embedder
        self.vector_index = vector_index
        self.index_name = index_name
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold
        self.excerpt_chars = excerpt_chars

        logger.info(
            "retriever_initialized",
            index_name=index_name,
            top_k=top_k,
            similarity_threshold=similarity_threshold,
        )

    async def retrieve(
        self,
        query: str,
        document_ids: Optional[List[str]] = None,
    ) -> List[RetrievedChunk]:
        """Retrieve relevant chunks for a query.

        Args:
            query: User message text
            document_ids: Restrict candidates to these documents when non-empty

        Returns:
            Resolved chunks in descending similarity order; hits below the
            threshold and hits with no chunk record are dropped
        """
        query_embedding = await self.embedder.embed_one(query)

        metadata_filter = {"document_id": {"$in": list(document_ids)}} if document_ids else None
        hits = await self.vector_index.search(
            self.index_name,
            query_embedding,
            top_k=self.top_k,
            metadata_filter=metadata_filter,
        )

        relevant = [hit for hit in hits if hit.score >= self.similarity_threshold]

        logger.info(
            "vector_hits_filtered",
            hits=len(hits),
            relevant=len(relevant),
            threshold=self.similarity_threshold,
        )

        records = self.db.get_chunks_by_embedding_ids([hit.id for hit in relevant])
        by_embedding_id = {record.embedding_id: record for record in records}

        results = []
        for hit in relevant:
            record = by_embedding_id.get(hit.id)
            if record is None:
                logger.warning("stale_vector_entry", embedding_id=hit.id)
                continue

            source = Source(
                document_id=record.document_id,
                document_title=record.document_name or UNKNOWN_TITLE,
                chunk_index=record.chunk_index,
                excerpt=make_excerpt(record.content, self.excerpt_chars),
                similarity=hit.score,
            )
            results.append(RetrievedChunk(source=source, content=record.content))

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(results),
            top_score=results[0].source.similarity if results else None,
        )

        return results
