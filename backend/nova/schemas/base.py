"""Base schema configuration."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """Base schema with common configuration. Serialized with camelCase keys."""

    model_config = ConfigDict(
        from_attributes=True,  # Build from domain values
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class CreatedAtMixin(BaseModel):
    """Mixin for created_at timestamp."""

    created_at: datetime


class IDMixin(BaseModel):
    """Mixin for UUID primary key."""

    id: UUID
