"""Shared configuration for immutable domain values."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class DomainModel(BaseModel):
    """
    Base for domain values.

    Values are frozen: every state change goes through a method that returns
    a new instance, and construction goes through the validating factories.
    """

    model_config = ConfigDict(
        frozen=True,
        use_enum_values=False,
    )
