# Generated migration for the DocumentChunk model

from django.db import migrations, models
import pgvector.django


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        pgvector.django.VectorExtension(),
        migrations.CreateModel(
            name='DocumentChunk',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('session_id', models.CharField(db_index=True, help_text='Session that owns this chunk', max_length=255)),
                ('source_name', models.CharField(help_text="Original filename, or 'Pasted Text'", max_length=255)),
                ('source_type', models.CharField(choices=[('pdf', 'PDF'), ('docx', 'Word document'), ('doc', 'Word 97 document'), ('txt', 'Plain text'), ('md', 'Markdown'), ('rtf', 'Rich text'), ('text', 'Pasted text')], help_text='Format the text was extracted from', max_length=10)),
                ('chunk_index', models.PositiveIntegerField(help_text='Index of this chunk within its source (0-based)')),
                ('text', models.TextField(help_text='The text content of this chunk')),
                ('embedding', pgvector.django.VectorField(dimensions=768, help_text='Document-mode embedding of the chunk text')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'doc_chunks',
                'ordering': ['id'],
                'indexes': [models.Index(fields=['session_id', 'id'], name='doc_chunks_session_id_idx')],
            },
        ),
    ]
