"""Vector index clients: a common contract over interchangeable backends.

Backends:
- FaissVectorIndex: local FAISS inner-product index over normalized vectors
- HttpVectorIndex: remote vector search service reached over REST

Both report results through normalize_search_result so callers only ever see
`SearchResult(id, score, metadata)`.
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import faiss
import httpx
import numpy as np
import structlog

from docchat.errors import ConfigurationError, UpstreamError

logger = structlog.get_logger()

UPSERT_BATCH_SIZE = 100

MetadataFilter = Dict[str, Any]


@dataclass
class VectorEntry:
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchResult:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


def normalize_search_result(raw: Dict[str, Any]) -> SearchResult:
    """Map a backend result onto SearchResult.

    Backends name the score `similarity` or `score` and the metadata `meta` or
    `metadata`; a missing score becomes 0.
    """
    score = raw.get("similarity")
    if score is None:
        score = raw.get("score")
    metadata = raw.get("meta") or raw.get("metadata") or {}
    return SearchResult(id=str(raw["id"]), score=float(score or 0.0), metadata=dict(metadata))


def matches_filter(metadata: Dict[str, Any], metadata_filter: Optional[MetadataFilter]) -> bool:
    """Evaluate `{"field": value}` or `{"field": {"$in": [...]}}` conditions."""
    if not metadata_filter:
        return True

    for key, condition in metadata_filter.items():
        value = metadata.get(key)
        if isinstance(condition, dict):
            if "$in" in condition and value not in condition["$in"]:
                return False
            if "$eq" in condition and value != condition["$eq"]:
                return False
        elif value != condition:
            return False
    return True


class VectorIndexClient(ABC):
    """Upsert/query/delete contract shared by all vector backends."""

    upsert_batch_size = UPSERT_BATCH_SIZE

    @abstractmethod
    async def ensure_index(self, name: str, dimensions: int) -> bool:
        """Create the index with cosine space unless it exists.

        Returns:
            True if a new index was created
        """

    @abstractmethod
    async def _upsert_entries(self, index_name: str, entries: List[VectorEntry]) -> None:
        """Insert or replace a single sub-batch of entries."""

    async def upsert(
        self,
        index_name: str,
        vector_id: str,
        vector: List[float],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._upsert_entries(index_name, [VectorEntry(vector_id, vector, metadata or {})])

    async def upsert_batch(self, index_name: str, entries: List[VectorEntry]) -> None:
        """Upsert entries in fixed-size sub-batches to respect payload limits."""
        for i in range(0, len(entries), self.upsert_batch_size):
            await self._upsert_entries(index_name, entries[i : i + self.upsert_batch_size])

    @abstractmethod
    async def search(
        self,
        index_name: str,
        vector: List[float],
        top_k: int,
        metadata_filter: Optional[MetadataFilter] = None,
    ) -> List[SearchResult]:
        """Nearest neighbours by descending cosine similarity."""

    async def flush(self, index_name: str) -> None:
        """Persist pending writes; backends that write through need nothing here."""

    @abstractmethod
    async def delete(self, index_name: str, vector_id: str) -> None:
        """Remove an entry; a missing id is not an error."""

    @abstractmethod
    async def health_check(self) -> bool:
        """True iff the backend is reachable and responsive."""


@dataclass
class _FaissState:
    index: Any
    dimension: int
    id_map: Dict[str, int] = field(default_factory=dict)
    metadata: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    next_id: int = 0
    dirty: bool = False

    def reverse_ids(self) -> Dict[int, str]:
        return {int_id: str_id for str_id, int_id in self.id_map.items()}


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (vectors / norms).astype(np.float32)


class FaissVectorIndex(VectorIndexClient):
    """FAISS-backed named indexes, optionally persisted to a directory.

    Each index is an IndexIDMap2 over IndexFlatIP holding L2-normalized
    float32 vectors, so inner product equals cosine similarity. Upserts are
    searchable immediately but reach disk only on flush(); deletes are saved
    right away.
    """

    def __init__(self, index_dir: Optional[Path] = None):
        """Initialize the FAISS vector index.

        Args:
            index_dir: Directory for `<name>.index` / `<name>.json`; None keeps
                indexes in memory only
        """
        self.index_dir = Path(index_dir) if index_dir else None
        self._indexes: Dict[str, _FaissState] = {}

        logger.info(
            "faiss_index_client_initialized",
            index_dir=str(self.index_dir) if self.index_dir else None,
        )

    def _paths(self, name: str):
        return self.index_dir / f"{name}.index", self.index_dir / f"{name}.json"

    def _load(self, name: str) -> Optional[_FaissState]:
        if self.index_dir is None:
            return None
        index_path, metadata_path = self._paths(name)
        if not (index_path.exists() and metadata_path.exists()):
            return None

        try:
            with open(metadata_path, "r") as f:
                stored = json.load(f)
            index = faiss.read_index(str(index_path))
        except Exception as e:
            raise RuntimeError(f"Failed to load FAISS index {name}: {e}") from e

        logger.info("faiss_index_loaded", name=name, vector_count=index.ntotal)
        return _FaissState(
            index=index,
            dimension=stored["dimension"],
            id_map=stored["id_map"],
            metadata=stored["metadata"],
            next_id=stored["next_id"],
        )

    def _save(self, name: str, state: _FaissState) -> None:
        if self.index_dir is None:
            return
        self.index_dir.mkdir(parents=True, exist_ok=True)
        index_path, metadata_path = self._paths(name)

        faiss.write_index(state.index, str(index_path))
        with open(metadata_path, "w") as f:
            json.dump(
                {
                    "dimension": state.dimension,
                    "space_type": "cosine",
                    "precision": "float32",
                    "id_map": state.id_map,
                    "metadata": state.metadata,
                    "next_id": state.next_id,
                },
                f,
            )

    def _state(self, name: str) -> _FaissState:
        state = self._indexes.get(name)
        if state is None:
            state = self._load(name)
            if state is None:
                raise UpstreamError(f"Vector index not found: {name}")
            self._indexes[name] = state
        return state

    async def ensure_index(self, name: str, dimensions: int) -> bool:
        state = self._indexes.get(name) or self._load(name)

        if state is not None:
            if state.dimension != dimensions:
                raise ConfigurationError(
                    f"Index {name} has dimension {state.dimension}, "
                    f"embedding model produces {dimensions}. Please rebuild the index."
                )
            self._indexes[name] = state
            return False

        state = _FaissState(
            index=faiss.IndexIDMap2(faiss.IndexFlatIP(dimensions)),
            dimension=dimensions,
        )
        self._indexes[name] = state
        self._save(name, state)
        logger.info("faiss_index_created", name=name, dimension=dimensions, space_type="cosine")
        return True

    async def _upsert_entries(self, index_name: str, entries: List[VectorEntry]) -> None:
        if not entries:
            return

        state = self._state(index_name)
        # Last write wins for ids repeated within one batch
        entries = list({e.id: e for e in entries}.values())
        vectors = np.array([e.values for e in entries], dtype=np.float32)

        if vectors.ndim != 2 or vectors.shape[1] != state.dimension:
            raise ConfigurationError(
                f"Embedding dimension mismatch: expected {state.dimension}, "
                f"got {vectors.shape[-1]}"
            )

        replaced = [state.id_map[e.id] for e in entries if e.id in state.id_map]
        if replaced:
            state.index.remove_ids(np.array(replaced, dtype=np.int64))

        int_ids = []
        for entry in entries:
            int_id = state.id_map.get(entry.id)
            if int_id is None:
                int_id = state.next_id
                state.next_id += 1
                state.id_map[entry.id] = int_id
            int_ids.append(int_id)
            state.metadata[entry.id] = dict(entry.metadata)

        state.index.add_with_ids(_normalize(vectors), np.array(int_ids, dtype=np.int64))
        state.dirty = True

        logger.debug(
            "vectors_upserted",
            index=index_name,
            count=len(entries),
            total_vectors=state.index.ntotal,
        )

    async def search(
        self,
        index_name: str,
        vector: List[float],
        top_k: int,
        metadata_filter: Optional[MetadataFilter] = None,
    ) -> List[SearchResult]:
        state = self._state(index_name)
        query = np.array([vector], dtype=np.float32)

        if query.shape[1] != state.dimension:
            raise ConfigurationError(
                f"Query dimension mismatch: expected {state.dimension}, got {query.shape[1]}"
            )

        total = state.index.ntotal
        if total == 0 or top_k <= 0:
            return []

        # Filtering happens after the scan, so a filtered query ranks every vector
        k = total if metadata_filter else min(top_k, total)
        scores, ids = state.index.search(_normalize(query), k)

        reverse = state.reverse_ids()
        results = []
        for score, int_id in zip(scores[0].tolist(), ids[0].tolist()):
            if int_id < 0:
                continue
            vector_id = reverse[int_id]
            metadata = state.metadata.get(vector_id, {})
            if not matches_filter(metadata, metadata_filter):
                continue
            results.append(normalize_search_result(
                {"id": vector_id, "similarity": score, "meta": metadata}
            ))
            if len(results) >= top_k:
                break

        logger.info(
            "vector_search_completed",
            index=index_name,
            top_k=top_k,
            results_found=len(results),
            filtered=bool(metadata_filter),
        )
        return results

    async def delete(self, index_name: str, vector_id: str) -> None:
        state = self._state(index_name)
        int_id = state.id_map.pop(vector_id, None)
        if int_id is None:
            return
        state.index.remove_ids(np.array([int_id], dtype=np.int64))
        state.metadata.pop(vector_id, None)
        self._save(index_name, state)
        state.dirty = False

    async def flush(self, index_name: str) -> None:
        """Write an index with unsaved upserts to disk."""
        state = self._indexes.get(index_name)
        if state is None or not state.dirty:
            return
        self._save(index_name, state)
        state.dirty = False
        logger.info("faiss_index_saved", name=index_name, vector_count=state.index.ntotal)

    async def health_check(self) -> bool:
        # In-process backend: reachable whenever the process is
        return True

    def get_stats(self) -> Dict[str, Any]:
        return {
            name: {"dimension": s.dimension, "vector_count": s.index.ntotal}
            for name, s in self._indexes.items()
        }


class HttpVectorIndex(VectorIndexClient):
    """Client for a remote vector search service over REST."""

    def __init__(
        self,
        base_url: str,
        auth_token: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the HTTP vector index client.

        Args:
            base_url: Service URL; requests go to `{base_url}/api/v1/...`
            auth_token: Sent as the Authorization header when set
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used in tests)
        """
        self.base_url = f"{base_url.rstrip('/')}/api/v1"
        self.headers = {"Authorization": auth_token} if auth_token else {}
        self.timeout = timeout
        self.transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPError as e:
            logger.error(
                "vector_service_error",
                method=method,
                path=path,
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise UpstreamError(f"Vector service request failed: {e}") from e

    async def ensure_index(self, name: str, dimensions: int) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(f"/index/{name}/info")
        except httpx.HTTPError as e:
            logger.error("vector_service_error", path=f"/index/{name}/info", error=str(e))
            raise UpstreamError(f"Vector service unreachable: {e}") from e

        if response.status_code == 200:
            return False
        if response.status_code != 404:
            raise UpstreamError(
                f"Vector service returned {response.status_code} for index {name}"
            )

        await self._request(
            "POST",
            "/index/create",
            json={
                "index_name": name,
                "dim": dimensions,
                "space_type": "cosine",
                "precision": "float32",
            },
        )
        logger.info("remote_index_created", name=name, dimension=dimensions)
        return True

    async def _upsert_entries(self, index_name: str, entries: List[VectorEntry]) -> None:
        if not entries:
            return
        await self._request(
            "POST",
            f"/index/{index_name}/vector/insert",
            json=[{"id": e.id, "vector": e.values, "meta": e.metadata} for e in entries],
        )

    async def search(
        self,
        index_name: str,
        vector: List[float],
        top_k: int,
        metadata_filter: Optional[MetadataFilter] = None,
    ) -> List[SearchResult]:
        payload: Dict[str, Any] = {"vector": vector, "k": top_k}
        if metadata_filter:
            payload["filter"] = metadata_filter

        response = await self._request("POST", f"/index/{index_name}/search", json=payload)
        raw = response.json()
        if isinstance(raw, dict):
            raw = raw.get("results", [])

        results = [normalize_search_result(r) for r in raw or []]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:top_k]

    async def delete(self, index_name: str, vector_id: str) -> None:
        try:
            async with self._client() as client:
                response = await client.delete(f"/index/{index_name}/vector/{vector_id}/delete")
        except httpx.HTTPError as e:
            raise UpstreamError(f"Vector service unreachable: {e}") from e

        if response.status_code not in (200, 204, 404):
            raise UpstreamError(
                f"Vector service returned {response.status_code} deleting {vector_id}"
            )

    async def health_check(self) -> bool:
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/index/list")
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("vector_service_health_check_failed", error=str(e))
            return False


def create_vector_index(settings) -> VectorIndexClient:
    """Build the configured backend ('faiss' or 'http')."""
    if settings.vector_backend == "faiss":
        return FaissVectorIndex(index_dir=settings.index_dir)
    if settings.vector_backend == "http":
        return HttpVectorIndex(
            base_url=settings.vector_service_url,
            auth_token=settings.vector_service_token,
        )
    raise ConfigurationError(f"Unknown vector backend: {settings.vector_backend}")
