"""Reviews, conversations, research sessions and app metadata."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "r0001_reco_baseline"
down_revision = None
branch_labels = None
depends_on = None

VECTOR_DIMENSIONS = 768


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "reviews",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("store_id", sa.String(255), nullable=True),
        sa.Column("product_id", sa.String(255), nullable=True),
        sa.Column("product_title", sa.String(512), nullable=True),
        sa.Column("author_name", sa.Text(), nullable=False, server_default="Anonymous"),
        sa.Column("rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("fit_feedback", sa.String(255), nullable=True),
        sa.Column("review_body", sa.Text(), nullable=False),
        sa.Column("source", sa.String(50), nullable=False, server_default="okendo"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("embedding", Vector(VECTOR_DIMENSIONS), nullable=True),
    )
    op.create_index("ix_reviews_external_id", "reviews", ["external_id"])
    op.create_index("ix_reviews_store_id", "reviews", ["store_id"])
    op.create_index("ix_reviews_product_id", "reviews", ["product_id"])
    op.create_index("ix_reviews_store_product", "reviews", ["store_id", "product_id"])

    op.create_table(
        "conversation",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("store_id", sa.String(255), nullable=True),
        sa.Column("product_id", sa.String(255), nullable=True),
        sa.Column("product_title", sa.String(512), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("messages_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_conversation_session_id", "conversation", ["session_id"], unique=True)
    op.create_index("ix_conversation_store_id", "conversation", ["store_id"])

    op.create_table(
        "message",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("conversation_id", sa.BigInteger(), sa.ForeignKey("conversation.id"), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("evidence_count", sa.Integer(), nullable=True),
        sa.Column("suggestions", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )
    op.create_index("ix_message_conversation_id", "message", ["conversation_id"])

    op.create_table(
        "research_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="running"),
        sa.Column("steps", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("question", sa.Text(), nullable=True),
        sa.Column("product_id", sa.String(255), nullable=True),
        sa.Column("answer", sa.Text(), nullable=True),
        sa.Column("evidence", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("suggestions", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=True),
    )

    op.create_table(
        "app_metadata",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("app_metadata")
    op.drop_table("research_sessions")
    op.drop_index("ix_message_conversation_id", table_name="message")
    op.drop_table("message")
    op.drop_index("ix_conversation_store_id", table_name="conversation")
    op.drop_index("ix_conversation_session_id", table_name="conversation")
    op.drop_table("conversation")
    op.drop_index("ix_reviews_store_product", table_name="reviews")
    op.drop_index("ix_reviews_product_id", table_name="reviews")
    op.drop_index("ix_reviews_store_id", table_name="reviews")
    op.drop_index("ix_reviews_external_id", table_name="reviews")
    op.drop_table("reviews")
