"""RAG query pipeline: one grounded answer per chat turn."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from docchat.llm_client import OllamaClient
from docchat.memory.manager import ConversationManager
from docchat.models import Source
from docchat.rag.retriever import Retriever, build_context

logger = structlog.get_logger()

NO_CONTEXT_MARKER = "No relevant context found."
FALLBACK_ANSWER = "I could not generate a response."

SYSTEM_INSTRUCTION = """You are a helpful assistant that answers questions based on the provided documents.

Use the following context to answer the user's question. If the answer is not in the context, say that you don't have enough information to answer.

When referencing information, mention which source it came from (e.g., "According to Source 1...")."""

GUIDELINES = """Guidelines:
- Be concise and accurate
- If you're unsure, say so
- Cite your sources when possible
- Stay on topic and answer the question directly"""


def build_prompt(context: str, question: str) -> str:
    """Instruction, context (or the no-context marker) and the literal question."""
    return (
        f"{SYSTEM_INSTRUCTION}\n\n"
        f"Context:\n{context or NO_CONTEXT_MARKER}\n\n"
        f"{GUIDELINES}\n\n"
        f"User question: {question}"
    )


@dataclass
class QueryResult:
    content: str
    sources: List[Source] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "sources": [s.to_dict() for s in self.sources]}


class RAGQueryPipeline:
    """Retrieves context, replays recent history and asks the chat model.

    Nothing is persisted here; the caller stores the turn's messages only
    after query() returns.
    """

    def __init__(
        self,
        retriever: Retriever,
        conversations: ConversationManager,
        llm: OllamaClient,
        temperature: float = 0.7,
        max_output_tokens: int = 1000,
    ):
        self.retriever = retriever
        self.conversations = conversations
        self.llm = llm
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    async def query(
        self,
        session_id: str,
        message: str,
        document_ids: Optional[List[str]] = None,
    ) -> QueryResult:
        """Answer a user message from the indexed documents.

        Args:
            session_id: Session whose recent messages form the history
            message: The user's question
            document_ids: Optional document scope for retrieval

        Returns:
            QueryResult with the answer text and its sources

        Raises:
            UpstreamError: If embedding, search or generation fails
        """
        results = await self.retriever.retrieve(message, document_ids=document_ids)
        context = build_context(results)

        history = self.conversations.format_conversation_history(session_id)
        messages = history + [{"role": "user", "content": build_prompt(context, message)}]

        response = await self.llm.chat(
            messages,
            temperature=self.temperature,
            max_tokens=self.max_output_tokens,
        )
        content = (response.get("message") or {}).get("content") or FALLBACK_ANSWER

        logger.info(
            "rag_query_completed",
            session_id=session_id,
            history_messages=len(history),
            sources=len(results),
            response_length=len(content),
        )

        return QueryResult(content=content, sources=[r.source for r in results])
