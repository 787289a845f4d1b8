"""SQLite relational store for documents, chunks and chat history.

Tables:
- documents: uploaded files and their ingestion status
- chunks: text chunks with the id of their vector index entry
- sessions: chat sessions scoped to a set of documents
- messages: chat messages with their source citations
"""
import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import structlog

from docchat.models import (
    ChatMessage,
    ChatSession,
    ChunkRecord,
    Document,
    DocumentStatus,
    Source,
)

logger = structlog.get_logger()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        file_name TEXT NOT NULL,
        file_type TEXT NOT NULL,
        file_size INTEGER NOT NULL,
        file_path TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        chunk_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunks (
        id TEXT PRIMARY KEY,
        document_id TEXT NOT NULL REFERENCES documents(id),
        chunk_index INTEGER NOT NULL,
        content TEXT NOT NULL,
        token_count INTEGER NOT NULL,
        embedding_id TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chunks_embedding_id ON chunks(embedding_id)",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document_id ON chunks(document_id)",
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT,
        document_ids_json TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
        content TEXT NOT NULL,
        sources_json TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id, created_at)",
]


def _row_to_document(row: sqlite3.Row) -> Document:
    data = dict(row)
    data["status"] = DocumentStatus(data["status"])
    return Document(**data)


def _row_to_session(row: sqlite3.Row) -> ChatSession:
    data = dict(row)
    document_ids = json.loads(data.pop("document_ids_json") or "[]")
    return ChatSession(document_ids=document_ids, **data)


def _row_to_message(row: sqlite3.Row) -> ChatMessage:
    data = dict(row)
    sources_json = data.pop("sources_json")
    sources = [Source.from_dict(s) for s in json.loads(sources_json)] if sources_json else []
    return ChatMessage(sources=sources, **data)


class Database:
    """Synchronous SQLite access; one short-lived connection per call."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection with row_factory set to sqlite3.Row."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self.get_connection()
        try:
            for statement in SCHEMA:
                conn.execute(statement)
            conn.commit()
            logger.info("database_initialized", db_path=str(self.db_path))
        except Exception as e:
            conn.rollback()
            logger.error("database_init_failed", error=str(e))
            raise
        finally:
            conn.close()

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        """Run a write statement and return the affected row count."""
        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, tuple(params))
            conn.commit()
            return cursor.rowcount
        except Exception as e:
            conn.rollback()
            logger.error("database_write_failed", error=str(e), sql=sql.split()[0])
            raise
        finally:
            conn.close()

    def _fetch(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        conn = self.get_connection()
        try:
            return conn.execute(sql, tuple(params)).fetchall()
        except Exception as e:
            logger.error("database_read_failed", error=str(e))
            raise
        finally:
            conn.close()

    # Documents

    def create_document(
        self,
        user_id: str,
        name: str,
        file_name: str,
        file_type: str,
        file_size: int,
        file_path: str,
        document_id: Optional[str] = None,
    ) -> Document:
        """Insert a new document in pending status."""
        now = _now()
        document = Document(
            id=document_id or str(uuid.uuid4()),
            user_id=user_id,
            name=name,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            file_path=file_path,
            status=DocumentStatus.PENDING,
            chunk_count=0,
            created_at=now,
            updated_at=now,
        )
        self._execute(
            """
            INSERT INTO documents (
                id, user_id, name, file_name, file_type, file_size,
                file_path, status, chunk_count, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                document.id, user_id, name, file_name, file_type, file_size,
                file_path, document.status.value, 0, now, now,
            ),
        )
        logger.info("document_created", document_id=document.id, file_type=file_type)
        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        rows = self._fetch("SELECT * FROM documents WHERE id = ?", (document_id,))
        return _row_to_document(rows[0]) if rows else None

    def list_documents(self, user_id: Optional[str] = None, limit: int = 100) -> List[Document]:
        """List documents, most recent first."""
        if user_id:
            rows = self._fetch(
                "SELECT * FROM documents WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
                (user_id, limit),
            )
        else:
            rows = self._fetch(
                "SELECT * FROM documents ORDER BY created_at DESC LIMIT ?", (limit,)
            )
        return [_row_to_document(row) for row in rows]

    def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        chunk_count: Optional[int] = None,
    ) -> bool:
        """Set status (and chunk_count when given) in a single UPDATE.

        Returns:
            True if a document row was updated
        """
        if chunk_count is None:
            updated = self._execute(
                "UPDATE documents SET status = ?, updated_at = ? WHERE id = ?",
                (DocumentStatus(status).value, _now(), document_id),
            )
        else:
            updated = self._execute(
                "UPDATE documents SET status = ?, chunk_count = ?, updated_at = ? WHERE id = ?",
                (DocumentStatus(status).value, chunk_count, _now(), document_id),
            )
        return updated > 0

    # Chunks

    def insert_chunk(
        self,
        document_id: str,
        chunk_index: int,
        content: str,
        token_count: int,
        embedding_id: str,
    ) -> str:
        """Insert one chunk record.

        Returns:
            ID of the inserted chunk row
        """
        chunk_id = str(uuid.uuid4())
        self._execute(
            """
            INSERT INTO chunks (
                id, document_id, chunk_index, content, token_count,
                embedding_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (chunk_id, document_id, chunk_index, content, token_count, embedding_id, _now()),
        )
        return chunk_id

    def insert_chunks(self, chunks: List[Dict[str, Any]]) -> int:
        """Batch insert chunk dicts (document_id, chunk_index, content, token_count, embedding_id).

        For bulk loads whose vectors are already in the index; ingestion uses
        insert_chunk so each row follows its own vector upsert.
        """
        if not chunks:
            return 0

        now = _now()
        conn = self.get_connection()
        try:
            conn.executemany(
                """
                INSERT INTO chunks (
                    id, document_id, chunk_index, content, token_count,
                    embedding_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        str(uuid.uuid4()), c["document_id"], c["chunk_index"],
                        c["content"], c["token_count"], c["embedding_id"], now,
                    )
                    for c in chunks
                ],
            )
            conn.commit()
            return len(chunks)
        except Exception as e:
            conn.rollback()
            logger.error("chunk_batch_insert_failed", error=str(e), count=len(chunks))
            raise
        finally:
            conn.close()

    def get_chunks_by_embedding_ids(self, embedding_ids: List[str]) -> List[ChunkRecord]:
        """Retrieve chunks joined with their document's name."""
        if not embedding_ids:
            return []

        placeholders = ",".join("?" * len(embedding_ids))
        rows = self._fetch(
            f"""
            SELECT
                c.id, c.document_id, c.chunk_index, c.content, c.token_count,
                c.embedding_id, c.created_at, d.name AS document_name
            FROM chunks c
            LEFT JOIN documents d ON d.id = c.document_id
            WHERE c.embedding_id IN ({placeholders})
            """,
            embedding_ids,
        )
        return [ChunkRecord(**dict(row)) for row in rows]

    def get_chunks_for_document(self, document_id: str) -> List[ChunkRecord]:
        rows = self._fetch(
            "SELECT * FROM chunks WHERE document_id = ? ORDER BY chunk_index",
            (document_id,),
        )
        return [ChunkRecord(**dict(row)) for row in rows]

    def count_chunks(self, document_id: str) -> int:
        rows = self._fetch("SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,))
        return rows[0][0]

    # Sessions

    def create_session(
        self,
        user_id: str,
        title: Optional[str] = None,
        document_ids: Optional[List[str]] = None,
    ) -> ChatSession:
        now = _now()
        session = ChatSession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            document_ids=list(document_ids or []),
            created_at=now,
            updated_at=now,
        )
        self._execute(
            """
            INSERT INTO sessions (id, user_id, title, document_ids_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (session.id, user_id, title, json.dumps(session.document_ids), now, now),
        )
        return session

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        rows = self._fetch("SELECT * FROM sessions WHERE id = ?", (session_id,))
        return _row_to_session(rows[0]) if rows else None

    def list_sessions(self, user_id: Optional[str] = None, limit: int = 50) -> List[ChatSession]:
        """List sessions, most recently updated first."""
        if user_id:
            rows = self._fetch(
                "SELECT * FROM sessions WHERE user_id = ? ORDER BY updated_at DESC LIMIT ?",
                (user_id, limit),
            )
        else:
            rows = self._fetch(
                "SELECT * FROM sessions ORDER BY updated_at DESC LIMIT ?", (limit,)
            )
        return [_row_to_session(row) for row in rows]

    def update_session_title(self, session_id: str, title: str) -> bool:
        return self._execute(
            "UPDATE sessions SET title = ?, updated_at = ? WHERE id = ?",
            (title, _now(), session_id),
        ) > 0

    def touch_session(self, session_id: str) -> None:
        self._execute("UPDATE sessions SET updated_at = ? WHERE id = ?", (_now(), session_id))

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and its messages.

        Returns:
            True if deleted, False if not found
        """
        return self._execute("DELETE FROM sessions WHERE id = ?", (session_id,)) > 0

    # Messages

    def add_message(
        self,
        session_id: str,
        role: str,
        content: str,
        sources: Optional[List[Source]] = None,
    ) -> ChatMessage:
        message = ChatMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=role,
            content=content,
            sources=list(sources or []),
            created_at=_now(),
        )
        sources_json = json.dumps([s.to_dict() for s in message.sources]) if sources else None
        self._execute(
            """
            INSERT INTO messages (id, session_id, role, content, sources_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (message.id, session_id, role, content, sources_json, message.created_at),
        )
        return message

    def get_messages(self, session_id: str) -> List[ChatMessage]:
        """All messages of a session in chronological order."""
        rows = self._fetch(
            "SELECT * FROM messages WHERE session_id = ? ORDER BY created_at, rowid",
            (session_id,),
        )
        return [_row_to_message(row) for row in rows]

    def get_recent_messages(self, session_id: str, limit: int) -> List[ChatMessage]:
        """The newest `limit` messages of a session, returned oldest-first."""
        rows = self._fetch(
            """
            SELECT * FROM messages WHERE session_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (session_id, limit),
        )
        return [_row_to_message(row) for row in reversed(rows)]
