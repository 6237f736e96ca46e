"""Learner profile, a read-only personalization input."""

from uuid import UUID

from nova.domain.base import DomainModel


class LearnerProfile(DomainModel):
    profile_id: UUID
    current_role: str | None = None
    experience_years: int | None = None
    primary_tech_stack: str | None = None
    current_project: str | None = None
    learning_goals: str | None = None
    learning_style: str | None = None
    preferred_pace: str | None = None
    identified_strengths: str | None = None
    identified_struggles: str | None = None

    @property
    def is_empty(self) -> bool:
        return not any(
            getattr(self, name) is not None
            for name in type(self).model_fields
            if name != "profile_id"
        )
