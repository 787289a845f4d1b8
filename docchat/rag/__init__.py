"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Text extraction from PDF, DOCX and plain text
- Paragraph/sentence chunking with word overlap
- Embedding generation
- Vector index clients (FAISS, remote HTTP service)
- Document ingestion
- Retrieval and grounded answer generation
"""
