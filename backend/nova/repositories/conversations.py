"""SQLAlchemy repository for sessions and messages."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession

from nova.db.models import ConversationSession as SessionRow
from nova.db.models import Message as MessageRow
from nova.domain import ConversationSession, Message, MessageRole, SessionSummary


def _session_to_domain(row: SessionRow) -> ConversationSession:
    return ConversationSession(
        id=row.id,
        profile_id=row.profile_id,
        title=row.title,
        created_at=row.created_at,
        last_message_at=row.last_message_at,
        is_deleted=row.is_deleted,
        last_memory_extraction_at=row.last_memory_extraction_at,
        last_processed_message_id=row.last_processed_message_id,
    )


def _message_to_domain(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        session_id=row.session_id,
        role=MessageRole(row.role),
        content=row.content,
        created_at=row.created_at,
        tokens_used=row.tokens_used,
        model_used=row.model_used,
        seq=row.seq,
    )


class SqlConversationRepository:
    """Conversation store backed by the nova_conversation_sessions / nova_messages tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def find_session(self, session_id: UUID) -> ConversationSession | None:
        row = await self.db.get(SessionRow, session_id)
        return _session_to_domain(row) if row else None

    async def find_session_for_update(self, session_id: UUID) -> ConversationSession | None:
        stmt = select(SessionRow).where(SessionRow.id == session_id).with_for_update()
        result = await self.db.execute(stmt, execution_options={"populate_existing": True})
        row = result.scalar_one_or_none()
        return _session_to_domain(row) if row else None

    async def add_session(self, session: ConversationSession) -> None:
        self.db.add(
            SessionRow(
                id=session.id,
                profile_id=session.profile_id,
                title=session.title,
                created_at=session.created_at,
                last_message_at=session.last_message_at,
                is_deleted=session.is_deleted,
                last_memory_extraction_at=session.last_memory_extraction_at,
                last_processed_message_id=session.last_processed_message_id,
            )
        )
        await self.db.flush()

    async def update_session(self, session: ConversationSession) -> None:
        row = await self.db.get(SessionRow, session.id)
        if row is None:
            raise LookupError(f"Session {session.id} does not exist")
        row.title = session.title
        row.last_message_at = session.last_message_at
        row.is_deleted = session.is_deleted
        row.last_memory_extraction_at = session.last_memory_extraction_at
        row.last_processed_message_id = session.last_processed_message_id
        await self.db.flush()

    async def list_sessions(
        self,
        profile_id: UUID,
        *,
        limit: int,
        before: tuple[datetime, UUID] | None = None,
    ) -> list[SessionSummary]:
        message_count = (
            select(func.count(MessageRow.id))
            .where(MessageRow.session_id == SessionRow.id)
            .correlate(SessionRow)
            .scalar_subquery()
        )
        stmt = select(SessionRow, message_count).where(
            SessionRow.profile_id == profile_id,
            SessionRow.is_deleted.is_(False),
        )
        if before is not None:
            before_at, before_id = before
            stmt = stmt.where(
                or_(
                    SessionRow.last_message_at < before_at,
                    and_(SessionRow.last_message_at == before_at, SessionRow.id < before_id),
                )
            )
        stmt = stmt.order_by(SessionRow.last_message_at.desc(), SessionRow.id.desc()).limit(limit)

        result = await self.db.execute(stmt)
        return [
            SessionSummary(
                id=row.id,
                title=row.title,
                created_at=row.created_at,
                last_message_at=row.last_message_at,
                message_count=count or 0,
            )
            for row, count in result.all()
        ]

    async def sessions_needing_extraction(self, profile_id: UUID) -> list[ConversationSession]:
        stmt = (
            select(SessionRow)
            .where(
                SessionRow.profile_id == profile_id,
                SessionRow.is_deleted.is_(False),
                or_(
                    SessionRow.last_memory_extraction_at.is_(None),
                    SessionRow.last_message_at > SessionRow.last_memory_extraction_at,
                ),
            )
            .order_by(SessionRow.last_message_at.asc())
        )
        result = await self.db.execute(stmt)
        return [_session_to_domain(row) for row in result.scalars()]

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def add_message(self, message: Message) -> Message:
        row = MessageRow(
            id=message.id,
            session_id=message.session_id,
            role=message.role.value,
            content=message.content,
            created_at=message.created_at,
            tokens_used=message.tokens_used,
            model_used=message.model_used,
        )
        self.db.add(row)
        await self.db.flush()
        return _message_to_domain(row)

    async def find_message(self, message_id: UUID) -> Message | None:
        row = await self.db.get(MessageRow, message_id)
        return _message_to_domain(row) if row else None

    async def list_messages(self, session_id: UUID, *, limit: int | None = None) -> list[Message]:
        if limit is None:
            stmt = (
                select(MessageRow)
                .where(MessageRow.session_id == session_id)
                .order_by(MessageRow.created_at.asc(), MessageRow.seq.asc())
            )
            result = await self.db.execute(stmt)
            return [_message_to_domain(row) for row in result.scalars()]

        # Take the newest N, then return them oldest first
        stmt = (
            select(MessageRow)
            .where(MessageRow.session_id == session_id)
            .order_by(MessageRow.created_at.desc(), MessageRow.seq.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [_message_to_domain(row) for row in reversed(result.scalars().all())]

    async def list_messages_after(self, session_id: UUID, after_message_id: UUID | None) -> list[Message]:
        stmt = select(MessageRow).where(MessageRow.session_id == session_id)

        if after_message_id is not None:
            watermark = await self.db.get(MessageRow, after_message_id)
            if watermark is not None and watermark.session_id == session_id:
                stmt = stmt.where(
                    tuple_(MessageRow.created_at, MessageRow.seq)
                    > tuple_(watermark.created_at, watermark.seq)
                )

        stmt = stmt.order_by(MessageRow.created_at.asc(), MessageRow.seq.asc())
        result = await self.db.execute(stmt)
        return [_message_to_domain(row) for row in result.scalars()]
