"""
RAG (Retrieval Augmented Generation) app.

Provides:
- Query embedding in retrieval-query mode
- Session-scoped similarity search
- History-aware query rewriting
- Grounded answer generation
"""
