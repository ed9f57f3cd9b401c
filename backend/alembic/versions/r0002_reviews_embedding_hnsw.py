"""HNSW cosine index on review embeddings."""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "r0002_reviews_embedding_hnsw"
down_revision = "r0001_reco_baseline"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_reviews_embedding_hnsw "
        "ON reviews USING hnsw (embedding vector_cosine_ops)"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_reviews_embedding_hnsw")
