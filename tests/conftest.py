"""Shared fixtures and fakes for unit tests."""
from typing import Dict, List, Optional

import pytest

from docchat.db import Database
from docchat.errors import UpstreamError
from docchat.rag.vector_index import SearchResult, VectorEntry, VectorIndexClient
from docchat.storage import LocalObjectStorage

DIM = 4


class FakeLLMClient:
    """Stands in for OllamaClient: deterministic embeddings, canned answers."""

    def __init__(self, answer: str = "Grounded answer.", vectors: Optional[Dict[str, List[float]]] = None):
        self.answer = answer
        self.vectors = vectors or {}
        self.default_vector = [1.0, 0.0, 0.0, 0.0]
        self.embedding_calls: List[str] = []
        self.chat_calls: List[dict] = []
        self.fail_embedding_on: Optional[str] = None
        self.fail_chat = False
        self.models = ["gemma3:12b"]

    async def embeddings(self, prompt: str, model: Optional[str] = None) -> dict:
        self.embedding_calls.append(prompt)
        if self.fail_embedding_on is not None and self.fail_embedding_on in prompt:
            raise UpstreamError("Embedding request failed: boom")
        return {"embedding": self.vectors.get(prompt, self.default_vector)}

    async def chat(self, messages, model=None, temperature=None, max_tokens=None) -> dict:
        self.chat_calls.append({
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.fail_chat:
            raise UpstreamError("Chat request failed: boom")
        return {"message": {"role": "assistant", "content": self.answer}}

    async def list_models(self) -> List[str]:
        return self.models


class StubVectorIndex(VectorIndexClient):
    """Records calls and returns preset search results."""

    def __init__(self, results: Optional[List[SearchResult]] = None):
        self.results = results or []
        self.created: List[tuple] = []
        self.existing: Dict[str, int] = {}
        self.upserted: List[VectorEntry] = []
        self.searches: List[dict] = []
        self.deleted: List[str] = []
        self.flushed: List[str] = []
        self.healthy = True

    async def ensure_index(self, name: str, dimensions: int) -> bool:
        if name in self.existing:
            return False
        self.existing[name] = dimensions
        self.created.append((name, dimensions))
        return True

    async def _upsert_entries(self, index_name, entries):
        self.upserted.extend(entries)

    async def search(self, index_name, vector, top_k, metadata_filter=None):
        self.searches.append({"index": index_name, "top_k": top_k, "filter": metadata_filter})
        return self.results[:top_k]

    async def delete(self, index_name, vector_id):
        self.deleted.append(vector_id)

    async def flush(self, index_name):
        self.flushed.append(index_name)

    async def health_check(self) -> bool:
        return self.healthy


@pytest.fixture
def db(tmp_path) -> Database:
    database = Database(tmp_path / "test.sqlite")
    database.init_schema()
    return database


@pytest.fixture
def storage(tmp_path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "uploads")


@pytest.fixture
def llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def stub_index() -> StubVectorIndex:
    return StubVectorIndex()


@pytest.fixture
def make_document(db, storage):
    """Store bytes and create a pending document for them."""

    async def _make(content: bytes = b"Hello world.", file_type: str = "txt", name: str = "Notes"):
        document = db.create_document(
            user_id="user-1",
            name=name,
            file_name=f"{name.lower()}.{file_type}",
            file_type=file_type,
            file_size=len(content),
            file_path=f"user-1/{name.lower()}.{file_type}",
        )
        await storage.upload(document.file_path, content)
        return document

    return _make
