"""Embedding gateway over the remote embedding model."""
from typing import List, Optional

import structlog

from docchat.errors import ConfigurationError, UpstreamError
from docchat.llm_client import OllamaClient

logger = structlog.get_logger()


class EmbeddingGateway:
    """Turns text into fixed-dimension vectors, one request per text."""

    def __init__(
        self,
        client: OllamaClient,
        model: Optional[str] = None,
        batch_size: int = 100,
        dimension: Optional[int] = None,
    ):
        """Initialize the gateway.

        Args:
            client: Client exposing `embeddings(prompt, model)`
            model: Embedding model name (defaults to the client's)
            batch_size: Texts per sub-batch in embed_batch
            dimension: Expected vector length; None skips the check
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        self.client = client
        self.model = model
        self.batch_size = batch_size
        self.dimension = dimension

    async def embed_one(self, text: str) -> List[float]:
        """Embed a single text.

        Raises:
            UpstreamError: If the service fails or returns an empty vector
            ConfigurationError: If the vector length differs from `dimension`
        """
        response = await self.client.embeddings(prompt=text, model=self.model)
        embedding = response.get("embedding") or []

        if not embedding:
            logger.error("empty_embedding_returned", text_preview=text[:100])
            raise UpstreamError("Empty embedding returned by the embedding service")

        if self.dimension is not None and len(embedding) != self.dimension:
            raise ConfigurationError(
                f"Embedding dimension mismatch: model returned {len(embedding)}, "
                f"index expects {self.dimension}"
            )

        return embedding

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed texts in order; the first failure aborts the whole batch.

        The model has no batch endpoint, so each sub-batch is sent one text at
        a time to bound outstanding requests.
        """
        embeddings: List[List[float]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]

            for text in batch:
                embeddings.append(await self.embed_one(text))

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(embeddings),
            )

        return embeddings
