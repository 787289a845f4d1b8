"""Tests for the ingestion pipeline and its task runner."""
import faiss
import pytest

from docchat.errors import NotFoundError, UnsupportedFormatError, UpstreamError
from docchat.models import DocumentStatus
from docchat.rag.chunker import TextChunker
from docchat.rag.embedder import EmbeddingGateway
from docchat.rag.extractor import TextExtractor
from docchat.rag.ingest import IngestionPipeline, IngestionTaskRunner, embedding_id_for
from docchat.rag.vector_index import FaissVectorIndex
from tests.conftest import DIM, StubVectorIndex

TWO_PARAGRAPHS = (
    b"alpha bravo charlie delta echo foxtrot\n\n"
    b"golf hotel india juliet kilo lima mike"
)


def _pipeline(db, storage, llm, index, max_tokens=500, overlap_tokens=100):
    return IngestionPipeline(
        db=db,
        storage=storage,
        extractor=TextExtractor(),
        chunker=TextChunker(max_tokens, overlap_tokens),
        embedder=EmbeddingGateway(llm, dimension=DIM),
        vector_index=index,
        index_name="documents",
        dimension=DIM,
    )


def test_embedding_id_format():
    assert embedding_id_for("doc-1", 0) == "doc-1-0"
    assert embedding_id_for("doc-1", 12) == "doc-1-12"


async def test_process_document_completes(db, storage, llm, stub_index, make_document):
    document = await make_document(TWO_PARAGRAPHS)
    pipeline = _pipeline(db, storage, llm, stub_index, max_tokens=10, overlap_tokens=0)

    result = await pipeline.process_document(document.id)

    stored = db.get_document(document.id)
    assert result.chunk_count == 2
    assert stored.status == DocumentStatus.COMPLETED
    assert stored.chunk_count == db.count_chunks(document.id) == 2
    assert stub_index.created == [("documents", DIM)]
    assert [e.id for e in stub_index.upserted] == [f"{document.id}-0", f"{document.id}-1"]
    assert stub_index.upserted[1].metadata == {"document_id": document.id, "chunk_index": 1}
    assert [c.embedding_id for c in db.get_chunks_for_document(document.id)] == [
        f"{document.id}-0",
        f"{document.id}-1",
    ]


async def test_single_short_document_gives_one_chunk(db, storage, llm, stub_index, make_document):
    document = await make_document(b"A. B. C.")

    result = await _pipeline(db, storage, llm, stub_index).process_document(document.id)

    assert result.chunk_count == 1
    assert db.get_chunks_for_document(document.id)[0].content == "A. B. C."


async def test_vector_written_before_chunk_record(db, storage, llm, make_document):
    class OrderCheckingIndex(StubVectorIndex):
        def __init__(self):
            super().__init__()
            self.rows_at_upsert = []

        async def _upsert_entries(self, index_name, entries):
            for entry in entries:
                self.rows_at_upsert.append(len(db.get_chunks_by_embedding_ids([entry.id])))
            await super()._upsert_entries(index_name, entries)

    index = OrderCheckingIndex()
    document = await make_document(TWO_PARAGRAPHS)

    await _pipeline(db, storage, llm, index, max_tokens=10, overlap_tokens=0).process_document(document.id)

    assert index.rows_at_upsert == [0, 0]


async def test_missing_document(db, storage, llm, stub_index):
    with pytest.raises(NotFoundError):
        await _pipeline(db, storage, llm, stub_index).process_document("no-such-document")


async def test_missing_stored_file_marks_failed(db, storage, llm, stub_index):
    document = db.create_document("user-1", "Ghost", "ghost.txt", "txt", 5, "user-1/ghost.txt")

    with pytest.raises(NotFoundError):
        await _pipeline(db, storage, llm, stub_index).process_document(document.id)

    assert db.get_document(document.id).status == DocumentStatus.FAILED


async def test_unsupported_type_marks_failed(db, storage, llm, stub_index, make_document):
    document = await make_document(b"\x89PNG", file_type="png")

    with pytest.raises(UnsupportedFormatError):
        await _pipeline(db, storage, llm, stub_index).process_document(document.id)

    assert db.get_document(document.id).status == DocumentStatus.FAILED
    assert stub_index.upserted == []


async def test_embedding_failure_writes_nothing(db, storage, llm, stub_index, make_document):
    document = await make_document(TWO_PARAGRAPHS)
    llm.fail_embedding_on = "golf"

    with pytest.raises(UpstreamError):
        await _pipeline(db, storage, llm, stub_index, max_tokens=10, overlap_tokens=0).process_document(document.id)

    assert db.get_document(document.id).status == DocumentStatus.FAILED
    assert stub_index.created == []
    assert stub_index.upserted == []
    assert db.count_chunks(document.id) == 0


async def test_chunk_insert_failure_leaves_vector_in_place(db, storage, llm, stub_index, make_document, monkeypatch):
    document = await make_document(TWO_PARAGRAPHS)

    def broken_insert(**kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(db, "insert_chunk", broken_insert)

    with pytest.raises(RuntimeError):
        await _pipeline(db, storage, llm, stub_index, max_tokens=10, overlap_tokens=0).process_document(document.id)

    stored = db.get_document(document.id)
    assert stored.status == DocumentStatus.FAILED
    assert stored.chunk_count == 0
    assert [e.id for e in stub_index.upserted] == [f"{document.id}-0"]


async def test_empty_document_completes_with_zero_chunks(db, storage, llm, stub_index, make_document):
    document = await make_document(b"   \n\n  ")

    result = await _pipeline(db, storage, llm, stub_index).process_document(document.id)

    assert result.chunk_count == 0
    assert db.get_document(document.id).status == DocumentStatus.COMPLETED
    assert llm.embedding_calls == []


class TestIngestionTaskRunner:
    async def test_submit_runs_in_background(self, db, storage, llm, stub_index, make_document):
        document = await make_document()
        runner = IngestionTaskRunner(_pipeline(db, storage, llm, stub_index))

        task = runner.submit(document.id)
        assert runner.is_running(document.id)

        result = await task

        assert result.chunk_count == 1
        assert not runner.is_running(document.id)
        assert db.get_document(document.id).status == DocumentStatus.COMPLETED

    async def test_wait_propagates_failure(self, db, storage, llm, stub_index, make_document):
        document = await make_document(b"data", file_type="png")
        runner = IngestionTaskRunner(_pipeline(db, storage, llm, stub_index))

        runner.submit(document.id)

        with pytest.raises(UnsupportedFormatError):
            await runner.wait(document.id)
        assert db.get_document(document.id).status == DocumentStatus.FAILED

    async def test_wait_without_task(self, db, storage, llm, stub_index):
        runner = IngestionTaskRunner(_pipeline(db, storage, llm, stub_index))

        assert await runner.wait("idle") is None
        assert not runner.is_running("idle")

    async def test_shutdown_cancels_in_flight(self, db, storage, llm, stub_index, make_document):
        document = await make_document()
        runner = IngestionTaskRunner(_pipeline(db, storage, llm, stub_index))

        task = runner.submit(document.id)
        await runner.shutdown()

        assert task.cancelled()
        assert not runner.is_running(document.id)


async def test_index_flushed_once_after_chunks(db, storage, llm, stub_index, make_document):
    document = await make_document(TWO_PARAGRAPHS)

    await _pipeline(db, storage, llm, stub_index, max_tokens=10, overlap_tokens=0).process_document(document.id)

    assert len(stub_index.upserted) == 2
    assert stub_index.flushed == ["documents"]


async def test_index_flushed_when_chunk_insert_fails(db, storage, llm, stub_index, make_document, monkeypatch):
    document = await make_document(TWO_PARAGRAPHS)

    def broken_insert(**kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(db, "insert_chunk", broken_insert)

    with pytest.raises(RuntimeError):
        await _pipeline(db, storage, llm, stub_index, max_tokens=10, overlap_tokens=0).process_document(document.id)

    assert stub_index.flushed == ["documents"]


async def test_persisted_faiss_index_written_once_per_document(db, storage, llm, make_document, tmp_path, monkeypatch):
    writes = []
    write_index = faiss.write_index

    def counting_write(index, path):
        writes.append(path)
        write_index(index, path)

    monkeypatch.setattr(faiss, "write_index", counting_write)
    text = "\n\n".join(f"Paragraph number {i} with a few words." for i in range(20)).encode()
    document = await make_document(text)

    result = await _pipeline(
        db, storage, llm, FaissVectorIndex(index_dir=tmp_path / "indexes"), max_tokens=10, overlap_tokens=0
    ).process_document(document.id)

    assert result.chunk_count == 20
    # One write creating the index, one flush after the chunk loop
    assert len(writes) == 2
