"""Wires components together from explicit settings."""
from dataclasses import dataclass
from typing import Optional

import structlog

from docchat.config import Settings
from docchat.db import Database
from docchat.llm_client import OllamaClient
from docchat.memory import ConversationManager
from docchat.rag.chunker import TextChunker
from docchat.rag.embedder import EmbeddingGateway
from docchat.rag.extractor import TextExtractor
from docchat.rag.ingest import IngestionPipeline, IngestionTaskRunner
from docchat.rag.query import RAGQueryPipeline
from docchat.rag.retriever import Retriever
from docchat.rag.vector_index import VectorIndexClient, create_vector_index
from docchat.storage import LocalObjectStorage

logger = structlog.get_logger()


@dataclass
class Services:
    settings: Settings
    db: Database
    storage: LocalObjectStorage
    llm: OllamaClient
    vector_index: VectorIndexClient
    conversations: ConversationManager
    ingestion: IngestionPipeline
    tasks: IngestionTaskRunner
    query_pipeline: RAGQueryPipeline


def build_services(
    settings: Optional[Settings] = None,
    llm: Optional[OllamaClient] = None,
    vector_index: Optional[VectorIndexClient] = None,
) -> Services:
    """Build the object graph; `llm` and `vector_index` may be swapped for fakes."""
    settings = settings or Settings.from_env()

    db = Database(settings.db_path)
    db.init_schema()

    storage = LocalObjectStorage(settings.uploads_dir)
    llm = llm or OllamaClient(
        base_url=settings.ollama_base_url,
        chat_model=settings.chat_model,
        embedding_model=settings.embedding_model,
        timeout=settings.ollama_timeout,
    )
    vector_index = vector_index or create_vector_index(settings)
    vector_index.upsert_batch_size = settings.upsert_batch_size

    embedder = EmbeddingGateway(
        llm,
        model=settings.embedding_model,
        batch_size=settings.embedding_batch_size,
        dimension=settings.embedding_dimension,
    )
    conversations = ConversationManager(db, history_limit=settings.history_limit)

    ingestion = IngestionPipeline(
        db=db,
        storage=storage,
        extractor=TextExtractor(),
        chunker=TextChunker(settings.chunk_max_tokens, settings.chunk_overlap_tokens),
        embedder=embedder,
        vector_index=vector_index,
        index_name=settings.index_name,
        dimension=settings.embedding_dimension,
    )
    retriever = Retriever(
        db=db,
        embedder=embedder,
        vector_index=vector_index,
        index_name=settings.index_name,
        top_k=settings.top_k,
        similarity_threshold=settings.similarity_threshold,
        excerpt_chars=settings.excerpt_chars,
    )
    query_pipeline = RAGQueryPipeline(
        retriever=retriever,
        conversations=conversations,
        llm=llm,
        temperature=settings.temperature,
        max_output_tokens=settings.max_output_tokens,
    )

    logger.info(
        "services_built",
        vector_backend=settings.vector_backend,
        chat_model=settings.chat_model,
        embedding_model=settings.embedding_model,
    )

    return Services(
        settings=settings,
        db=db,
        storage=storage,
        llm=llm,
        vector_index=vector_index,
        conversations=conversations,
        ingestion=ingestion,
        tasks=IngestionTaskRunner(ingestion),
        query_pipeline=query_pipeline,
    )
