"""Ingestion pipeline for uploaded documents.

Orchestrates, strictly in sequence:
- Status transition to processing
- File download and text extraction
- Chunking
- Embedding generation
- Vector upsert followed by chunk record insert, per chunk, then one index flush
- Final status and chunk count update

A failure after the document enters processing marks it failed and is
re-raised. Vectors and chunk rows written before the failure are left in
place; there is no rollback.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, Optional

import structlog

from docchat.db import Database
from docchat.errors import NotFoundError
from docchat.models import DocumentStatus
from docchat.rag.chunker import TextChunker
from docchat.rag.embedder import EmbeddingGateway
from docchat.rag.extractor import TextExtractor
from docchat.rag.vector_index import VectorIndexClient
from docchat.storage import LocalObjectStorage

logger = structlog.get_logger()


def embedding_id_for(document_id: str, chunk_index: int) -> str:
    return f"{document_id}-{chunk_index}"


@dataclass
class IngestionResult:
    document_id: str
    chunk_count: int
    text_length: int


class IngestionPipeline:
    """Turns one stored document into indexed, persisted chunks."""

    def __init__(
        self,
        db: Database,
        storage: LocalObjectStorage,
        extractor: TextExtractor,
        chunker: TextChunker,
        embedder: EmbeddingGateway,
        vector_index: VectorIndexClient,
        index_name: str,
        dimension: int,
    ):
        self.db = db
        self.storage = storage
        self.extractor = extractor
        self.chunker = chunker
        self.embedder = embedder
        self.vector_index = vector_index
        self.index_name = index_name
        self.dimension = dimension

    async def process_document(self, document_id: str) -> IngestionResult:
        """Run the full ingestion for one document.

        Args:
            document_id: Document to ingest

        Returns:
            IngestionResult with the number of chunks written

        Raises:
            NotFoundError: If the document or its stored file is missing
            UnsupportedFormatError: If the file type cannot be extracted
            UpstreamError: If the embedding or vector service fails
        """
        logger.info("document_processing_started", document_id=document_id)

        self.db.update_document_status(document_id, DocumentStatus.PROCESSING)

        try:
            document = self.db.get_document(document_id)
            if document is None:
                raise NotFoundError(f"Document not found: {document_id}")

            data = await self.storage.download(document.file_path)
            text = await self.extractor.extract(data, document.file_type)
            logger.info("document_text_extracted", document_id=document_id, text_length=len(text))

            chunks = self.chunker.chunk_text(text)
            logger.info(
                "document_chunked",
                document_id=document_id,
                **self.chunker.get_chunk_stats(chunks),
            )

            embeddings = await self.embedder.embed_batch([c.content for c in chunks])
            logger.info("document_embedded", document_id=document_id, embeddings=len(embeddings))

            await self.vector_index.ensure_index(self.index_name, self.dimension)

            try:
                for index, (chunk, embedding) in enumerate(zip(chunks, embeddings)):
                    embedding_id = embedding_id_for(document_id, index)

                    # Vector first: a persisted chunk must always have a retrievable vector
                    await self.vector_index.upsert(
                        self.index_name,
                        embedding_id,
                        embedding,
                        {"document_id": document_id, "chunk_index": index},
                    )
                    self.db.insert_chunk(
                        document_id=document_id,
                        chunk_index=index,
                        content=chunk.content,
                        token_count=chunk.token_count,
                        embedding_id=embedding_id,
                    )
            finally:
                # Vectors already upserted are kept on failure too
                await self.vector_index.flush(self.index_name)

            self.db.update_document_status(
                document_id, DocumentStatus.COMPLETED, chunk_count=len(chunks)
            )

        except Exception as e:
            logger.error(
                "document_processing_failed",
                document_id=document_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self.db.update_document_status(document_id, DocumentStatus.FAILED)
            raise

        logger.info("document_processed", document_id=document_id, chunk_count=len(chunks))
        return IngestionResult(
            document_id=document_id,
            chunk_count=len(chunks),
            text_length=len(text),
        )


class IngestionTaskRunner:
    """Submits ingestion runs as asyncio tasks.

    The document status is the durable completion signal; the task handle is
    only kept while the run is in flight. At most one run per document is the
    caller's responsibility and is not enforced here.
    """

    def __init__(self, pipeline: IngestionPipeline):
        self.pipeline = pipeline
        self._tasks: Dict[str, asyncio.Task] = {}

    def submit(self, document_id: str) -> asyncio.Task:
        """Start ingestion in the background and return its task."""
        task = asyncio.create_task(
            self.pipeline.process_document(document_id),
            name=f"ingest-{document_id}",
        )
        self._tasks[document_id] = task
        task.add_done_callback(lambda t: self._on_done(document_id, t))
        logger.info("ingestion_task_submitted", document_id=document_id)
        return task

    def _on_done(self, document_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(document_id) is task:
            del self._tasks[document_id]

        if task.cancelled():
            logger.warning("ingestion_task_cancelled", document_id=document_id)
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "ingestion_task_failed",
                document_id=document_id,
                error=str(error),
                error_type=type(error).__name__,
            )

    def is_running(self, document_id: str) -> bool:
        task = self._tasks.get(document_id)
        return task is not None and not task.done()

    async def wait(self, document_id: str) -> Optional[IngestionResult]:
        """Await an in-flight run; None if nothing is running for the document."""
        task = self._tasks.get(document_id)
        if task is None:
            return None
        return await task

    async def shutdown(self) -> None:
        """Cancel in-flight runs (their documents stay in processing)."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
