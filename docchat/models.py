"""Records shared by the store, the pipelines and the API."""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class DocumentStatus(str, Enum):
    """Lifecycle of a document; only the ingestion pipeline moves it."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Document:
    id: str
    user_id: str
    name: str
    file_name: str
    file_type: str
    file_size: int
    file_path: str
    status: DocumentStatus = DocumentStatus.PENDING
    chunk_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class ChunkRecord:
    """A persisted chunk, joined with its document's name when loaded for retrieval."""

    id: str
    document_id: str
    chunk_index: int
    content: str
    token_count: int
    embedding_id: str
    document_name: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class Source:
    """Citation linking an answer back to one chunk of a document."""

    document_id: str
    document_title: str
    chunk_index: int
    excerpt: str
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Source":
        return cls(
            document_id=data["document_id"],
            document_title=data["document_title"],
            chunk_index=int(data["chunk_index"]),
            excerpt=data["excerpt"],
            similarity=float(data["similarity"]),
        )


@dataclass
class ChatSession:
    id: str
    user_id: str
    title: Optional[str] = None
    document_ids: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChatMessage:
    id: str
    session_id: str
    role: str  # 'user' or 'assistant'
    content: str
    sources: List[Source] = field(default_factory=list)
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "role": self.role,
            "content": self.content,
            "sources": [s.to_dict() for s in self.sources],
            "created_at": self.created_at,
        }
