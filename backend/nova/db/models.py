"""
SQLAlchemy 2.0 Models for Nova.

Uses modern declarative syntax with Mapped[] type annotations.
All models use UUID primary keys. Profiles live in the identity service,
so profile_id columns are plain UUIDs without a foreign key.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    BigInteger,
    CheckConstraint,
    Float,
    ForeignKey,
    Identity,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nova.db.base import Base


# =============================================================================
# CONVERSATIONS
# =============================================================================


class ConversationSession(Base):
    """
    Chat session between a learner and Nova.

    Soft-deleted only, since memories keep pointing at their source session.
    Tracks the memory consolidation watermark.
    """

    __tablename__ = "nova_conversation_sessions"
    __table_args__ = (
        Index("idx_nova_sessions_profile_deleted_last", "profile_id", "is_deleted", "last_message_at"),
        Index("idx_nova_sessions_profile_extraction", "profile_id", "last_memory_extraction_at"),
    )

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    profile_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )
    last_message_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )
    is_deleted: Mapped[bool] = mapped_column(default=False, server_default=text("FALSE"), nullable=False)

    # Memory consolidation watermark
    last_memory_extraction_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    last_processed_message_id: Mapped[Optional[UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("nova_messages.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
    )

    # Relationships
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="session",
        foreign_keys="Message.session_id",
        passive_deletes=True,
    )


class Message(Base):
    """
    Individual message in a session. Immutable once written.

    ``seq`` is an identity column giving insertion order for created_at ties.
    """

    __tablename__ = "nova_messages"
    __table_args__ = (
        Index("idx_nova_messages_session_created", "session_id", "created_at", "seq"),
        CheckConstraint("role IN ('user', 'assistant', 'system')", name="valid_message_role"),
    )
    # Fetch the server-generated seq on flush
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    seq: Mapped[int] = mapped_column(BigInteger, Identity(always=True), nullable=False, unique=True)
    session_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("nova_conversation_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # 'user', 'assistant', 'system'
    content: Mapped[str] = mapped_column(Text, nullable=False)
    tokens_used: Mapped[Optional[int]] = mapped_column(nullable=True)
    model_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )

    # Relationships
    session: Mapped["ConversationSession"] = relationship(
        "ConversationSession", back_populates="messages", foreign_keys=[session_id]
    )


# =============================================================================
# MEMORIES
# =============================================================================


class Memory(Base):
    """
    Fact about a learner, extracted from a conversation.

    Superseded rows stay for history; only rows with superseded_at NULL are active.
    """

    __tablename__ = "nova_memories"
    __table_args__ = (
        Index("idx_nova_memories_profile_category_active", "profile_id", "category", "superseded_at"),
        Index("idx_nova_memories_profile_created", "profile_id", "created_at"),
        Index("idx_nova_memories_profile_importance", "profile_id", "importance"),
        CheckConstraint("importance >= 1 AND importance <= 5", name="valid_importance"),
        CheckConstraint("occurrence_count >= 1", name="valid_occurrence_count"),
        CheckConstraint(
            "(superseded_at IS NULL) = (superseded_by_id IS NULL)",
            name="consistent_supersession",
        ),
    )

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    profile_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    source_session_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("nova_conversation_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    content: Mapped[str] = mapped_column(String(1000), nullable=False)
    embedding: Mapped[Optional[list[float]]] = mapped_column(ARRAY(Float), nullable=True)
    importance: Mapped[int] = mapped_column(nullable=False, server_default="3")
    occurrence_count: Mapped[int] = mapped_column(nullable=False, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )
    superseded_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    superseded_by_id: Mapped[Optional[UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("nova_memories.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )


# =============================================================================
# KNOWLEDGE BASE
# =============================================================================


class ContentChunk(Base):
    """
    Pre-embedded chunk of knowledge-base content.

    Written by the ingestion pipeline, read-only for the chat core.
    (source, source_identifier) is the dedup key.
    """

    __tablename__ = "nova_content_chunks"
    __table_args__ = (
        UniqueConstraint("source", "source_identifier", name="unique_chunk_source_identifier"),
        Index("idx_nova_chunks_source", "source"),
        Index("idx_nova_chunks_technology", "technology"),
        Index("idx_nova_chunks_author", "author"),
        Index("idx_nova_chunks_parent_document", "parent_document_id"),
    )

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    source_identifier: Mapped[str] = mapped_column(String(1000), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[str] = mapped_column(String(8000), nullable=False)
    embedding: Mapped[list[float]] = mapped_column(ARRAY(Float), nullable=False)
    token_count: Mapped[int] = mapped_column(nullable=False)

    # Optional metadata
    author: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    technology: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    parent_document_id: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    section_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    chunk_index: Mapped[Optional[int]] = mapped_column(nullable=True)
    start_time: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # seconds, video only
    end_time: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    source_url: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )


# =============================================================================
# LEARNER PROFILES
# =============================================================================


class LearnerProfile(Base):
    """Onboarding answers used to personalize prompts (1:1 with profile)."""

    __tablename__ = "nova_learner_profiles"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    profile_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, unique=True)
    current_role: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    experience_years: Mapped[Optional[int]] = mapped_column(nullable=True)
    primary_tech_stack: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    current_project: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    learning_goals: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    learning_style: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    preferred_pace: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    identified_strengths: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    identified_struggles: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )
