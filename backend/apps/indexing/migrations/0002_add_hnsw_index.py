"""
Migration to add HNSW index on doc_chunks.embedding for fast vector search.

HNSW (Hierarchical Navigable Small World) provides:
- Fast approximate nearest neighbor search
- No need to pre-train like IVFFlat
"""
from django.db import migrations


class Migration(migrations.Migration):

    dependencies = [
        ('indexing', '0001_initial'),
    ]

    operations = [
        # Cosine distance, matching the ordering used by PgVectorStore.search
        migrations.RunSQL(
            sql="""
                CREATE INDEX IF NOT EXISTS doc_chunks_embedding_hnsw_idx
                ON doc_chunks
                USING hnsw (embedding vector_cosine_ops)
                WITH (m = 16, ef_construction = 64);
            """,
            reverse_sql="DROP INDEX IF EXISTS doc_chunks_embedding_hnsw_idx;"
        ),
    ]
