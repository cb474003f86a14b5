"""
Document chunk model for storing text chunks with embeddings.
"""
from django.db import models
from pgvector.django import VectorField


class SourceType(models.TextChoices):
    """Kind of source a chunk was extracted from."""
    PDF = 'pdf', 'PDF'
    DOCX = 'docx', 'Word document'
    DOC = 'doc', 'Word 97 document'
    TXT = 'txt', 'Plain text'
    MD = 'md', 'Markdown'
    RTF = 'rtf', 'Rich text'
    TEXT = 'text', 'Pasted text'


class DocumentChunk(models.Model):
    """
    A text chunk from a document with its embedding vector.

    Chunks are bulk-created during ingestion, never updated, and deleted
    only together with the session that owns them. Every search filters
    on session_id; it is the only boundary between sessions.
    """
    # Auto-increment id doubles as insertion order for ranking ties
    id = models.BigAutoField(primary_key=True)

    session_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Session that owns this chunk"
    )

    source_name = models.CharField(
        max_length=255,
        help_text="Original filename, or 'Pasted Text'"
    )

    source_type = models.CharField(
        max_length=10,
        choices=SourceType.choices,
        help_text="Format the text was extracted from"
    )

    # Chunk ordering within its source (0-indexed)
    chunk_index = models.PositiveIntegerField(
        help_text="Index of this chunk within its source (0-based)"
    )

    text = models.TextField(
        help_text="The text content of this chunk"
    )

    # Dimension must match EMBEDDING_DIMENSIONS
    embedding = VectorField(
        dimensions=768,
        help_text="Document-mode embedding of the chunk text"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'doc_chunks'
        ordering = ['id']
        indexes = [
            models.Index(fields=['session_id', 'id'], name='doc_chunks_session_id_idx'),
        ]

    def __str__(self):
        preview = self.text[:50] + '...' if len(self.text) > 50 else self.text
        return f"Chunk {self.chunk_index} of {self.source_name}: {preview}"
