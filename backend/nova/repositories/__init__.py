"""Persistence adapters: repository contracts and SQLAlchemy implementations."""

from nova.repositories.base import (
    ContentRepository,
    ConversationRepository,
    LearnerProfileRepository,
    MemoryRepository,
    UnitOfWork,
    UnitOfWorkFactory,
)
from nova.repositories.sql import SqlUnitOfWork, sql_unit_of_work_factory

__all__ = [
    "ContentRepository",
    "ConversationRepository",
    "LearnerProfileRepository",
    "MemoryRepository",
    "UnitOfWork",
    "UnitOfWorkFactory",
    "SqlUnitOfWork",
    "sql_unit_of_work_factory",
]
