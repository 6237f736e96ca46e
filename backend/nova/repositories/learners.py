"""SQLAlchemy repository for learner profiles (read-only)."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nova.db.models import LearnerProfile as LearnerProfileRow
from nova.domain import LearnerProfile


class SqlLearnerProfileRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_profile_id(self, profile_id: UUID) -> LearnerProfile | None:
        result = await self.db.execute(
            select(LearnerProfileRow).where(LearnerProfileRow.profile_id == profile_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return LearnerProfile(
            profile_id=row.profile_id,
            current_role=row.current_role,
            experience_years=row.experience_years,
            primary_tech_stack=row.primary_tech_stack,
            current_project=row.current_project,
            learning_goals=row.learning_goals,
            learning_style=row.learning_style,
            preferred_pace=row.preferred_pace,
            identified_strengths=row.identified_strengths,
            identified_struggles=row.identified_struggles,
        )
