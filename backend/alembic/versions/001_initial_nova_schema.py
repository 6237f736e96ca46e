"""Initial Nova schema: sessions, messages, memories, content chunks, learner profiles.

Revision ID: 001
Revises:
Create Date: 2026-10-17

Changes:
- Create nova_conversation_sessions with the memory consolidation watermark
- Create nova_messages with an identity seq for insertion-order tie breaks
- Create nova_memories with a self-referencing supersession link
- Create nova_content_chunks (written by ingestion, read by retrieval)
- Create nova_learner_profiles
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP, ARRAY

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ==========================================================================
    # CONVERSATION SESSIONS TABLE
    # ==========================================================================
    op.create_table(
        "nova_conversation_sessions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("profile_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("last_message_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("FALSE"), nullable=False),

        # Memory consolidation watermark (FK added after nova_messages exists)
        sa.Column("last_memory_extraction_at", TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_processed_message_id", UUID(as_uuid=True), nullable=True),
    )

    op.create_index("ix_nova_conversation_sessions_profile_id", "nova_conversation_sessions", ["profile_id"])
    op.create_index(
        "idx_nova_sessions_profile_deleted_last",
        "nova_conversation_sessions",
        ["profile_id", "is_deleted", "last_message_at"],
    )
    op.create_index(
        "idx_nova_sessions_profile_extraction",
        "nova_conversation_sessions",
        ["profile_id", "last_memory_extraction_at"],
    )

    # ==========================================================================
    # MESSAGES TABLE
    # ==========================================================================
    op.create_table(
        "nova_messages",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("seq", sa.BigInteger(), sa.Identity(always=True), nullable=False, unique=True),
        sa.Column(
            "session_id",
            UUID(as_uuid=True),
            sa.ForeignKey("nova_conversation_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
        sa.Column("model_used", sa.String(100), nullable=True),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.CheckConstraint("role IN ('user', 'assistant', 'system')", name="valid_message_role"),
    )

    op.create_index("idx_nova_messages_session_created", "nova_messages", ["session_id", "created_at", "seq"])

    op.create_foreign_key(
        "fk_nova_sessions_last_processed_message",
        "nova_conversation_sessions",
        "nova_messages",
        ["last_processed_message_id"],
        ["id"],
        ondelete="SET NULL",
    )

    # ==========================================================================
    # MEMORIES TABLE
    # ==========================================================================
    op.create_table(
        "nova_memories",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("profile_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "source_session_id",
            UUID(as_uuid=True),
            sa.ForeignKey("nova_conversation_sessions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("content", sa.String(1000), nullable=False),
        sa.Column("embedding", ARRAY(sa.Float()), nullable=True),
        sa.Column("importance", sa.Integer(), server_default="3", nullable=False),
        sa.Column("occurrence_count", sa.Integer(), server_default="1", nullable=False),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),

        # Supersession
        sa.Column("superseded_at", TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "superseded_by_id",
            UUID(as_uuid=True),
            sa.ForeignKey("nova_memories.id", ondelete="RESTRICT"),
            nullable=True,
        ),

        sa.CheckConstraint("importance >= 1 AND importance <= 5", name="valid_importance"),
        sa.CheckConstraint("occurrence_count >= 1", name="valid_occurrence_count"),
        sa.CheckConstraint(
            "(superseded_at IS NULL) = (superseded_by_id IS NULL)",
            name="consistent_supersession",
        ),
    )

    op.create_index("ix_nova_memories_source_session_id", "nova_memories", ["source_session_id"])
    op.create_index("ix_nova_memories_superseded_by_id", "nova_memories", ["superseded_by_id"])
    op.create_index(
        "idx_nova_memories_profile_category_active",
        "nova_memories",
        ["profile_id", "category", "superseded_at"],
    )
    op.create_index("idx_nova_memories_profile_created", "nova_memories", ["profile_id", "created_at"])
    op.create_index("idx_nova_memories_profile_importance", "nova_memories", ["profile_id", "importance"])

    # ==========================================================================
    # CONTENT CHUNKS TABLE
    # ==========================================================================
    op.create_table(
        "nova_content_chunks",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("source_identifier", sa.String(1000), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("content", sa.String(8000), nullable=False),
        sa.Column("embedding", ARRAY(sa.Float()), nullable=False),
        sa.Column("token_count", sa.Integer(), nullable=False),

        # Optional metadata
        sa.Column("author", sa.String(200), nullable=True),
        sa.Column("technology", sa.String(50), nullable=True),
        sa.Column("parent_document_id", sa.String(500), nullable=True),
        sa.Column("section_path", sa.String(500), nullable=True),
        sa.Column("chunk_index", sa.Integer(), nullable=True),
        sa.Column("start_time", sa.Float(), nullable=True),
        sa.Column("end_time", sa.Float(), nullable=True),
        sa.Column("published_at", TIMESTAMP(timezone=True), nullable=True),
        sa.Column("source_url", sa.String(2000), nullable=True),

        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.UniqueConstraint("source", "source_identifier", name="unique_chunk_source_identifier"),
    )

    op.create_index("idx_nova_chunks_source", "nova_content_chunks", ["source"])
    op.create_index("idx_nova_chunks_technology", "nova_content_chunks", ["technology"])
    op.create_index("idx_nova_chunks_author", "nova_content_chunks", ["author"])
    op.create_index("idx_nova_chunks_parent_document", "nova_content_chunks", ["parent_document_id"])

    # ==========================================================================
    # LEARNER PROFILES TABLE
    # ==========================================================================
    op.create_table(
        "nova_learner_profiles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("profile_id", UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("current_role", sa.String(100), nullable=True),
        sa.Column("experience_years", sa.Integer(), nullable=True),
        sa.Column("primary_tech_stack", sa.String(500), nullable=True),
        sa.Column("current_project", sa.String(1000), nullable=True),
        sa.Column("learning_goals", sa.String(1000), nullable=True),
        sa.Column("learning_style", sa.String(50), nullable=True),
        sa.Column("preferred_pace", sa.String(50), nullable=True),
        sa.Column("identified_strengths", sa.String(2000), nullable=True),
        sa.Column("identified_struggles", sa.String(2000), nullable=True),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("nova_learner_profiles")
    op.drop_table("nova_content_chunks")
    op.drop_table("nova_memories")
    op.drop_constraint(
        "fk_nova_sessions_last_processed_message", "nova_conversation_sessions", type_="foreignkey"
    )
    op.drop_table("nova_messages")
    op.drop_table("nova_conversation_sessions")
