#!/usr/bin/env python
"""Upload a local file as a document and ingest it.

Usage:
    python scripts/ingest.py report.pdf --user-id alice
    python scripts/ingest.py notes.txt --user-id alice --name "Meeting notes"
"""
import argparse
import asyncio
import sys
import uuid
from datetime import datetime
from pathlib import Path

import structlog

from docchat.config import Settings
from docchat.errors import DocChatError
from docchat.services import build_services

logger = structlog.get_logger()


async def ingest_file(path: Path, user_id: str, name: str = None) -> int:
    """Store the file, create its document and run ingestion synchronously.

    Returns:
        Process exit code
    """
    settings = Settings.from_env()

    print("\n📋 Configuration:")
    print(f"   Embedding model:  {settings.embedding_model} ({settings.embedding_dimension} dims)")
    print(f"   Vector backend:   {settings.vector_backend}")
    print(f"   Chunk policy:     {settings.chunk_max_tokens} tokens, {settings.chunk_overlap_tokens} overlap")

    services = build_services(settings)

    data = path.read_bytes()
    document_id = str(uuid.uuid4())
    file_path = f"{user_id}/{document_id}/{path.name}"
    await services.storage.upload(file_path, data)
    services.db.create_document(
        user_id=user_id,
        name=name or path.stem,
        file_name=path.name,
        file_type=path.suffix.lstrip(".").lower(),
        file_size=len(data),
        file_path=file_path,
        document_id=document_id,
    )

    print(f"\n  Ingesting {path.name} as {document_id} ...")
    start = datetime.now()

    try:
        result = await services.ingestion.process_document(document_id)
    except DocChatError as e:
        print(f"\n❌ Ingestion failed: {e.message}\n")
        return 1

    elapsed = (datetime.now() - start).total_seconds()
    print(f"\n  📝 Chunks created:    {result.chunk_count}")
    print(f"  🗄️  Chunks stored:     {services.db.count_chunks(document_id)}")
    print(f"  📄 Characters read:   {result.text_length}")
    print(f"  ⏱️  Time elapsed:      {elapsed:.1f}s\n")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Ingest a document for RAG chat")
    parser.add_argument("path", type=Path, help="PDF, DOCX or TXT file")
    parser.add_argument("--user-id", required=True, help="Owning user id")
    parser.add_argument("--name", default=None, help="Display name (default: file stem)")
    args = parser.parse_args()

    if not args.path.is_file():
        print(f"\n❌ Error: file not found: {args.path}\n")
        sys.exit(1)

    try:
        code = asyncio.run(ingest_file(args.path, args.user_id, args.name))
    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled; the document is left in processing.\n")
        sys.exit(1)
    except Exception as e:
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        print(f"\n❌ Error: {e}\n")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
