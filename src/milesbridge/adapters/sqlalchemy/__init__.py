"""SQLAlchemy adapter package for milesbridge."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyCursorRepository,
    SqlAlchemyDeadLetterRepository,
    SqlAlchemyOrderRepository,
    SqlAlchemyProofRepository,
    SqlAlchemyProviderRepository,
)
from .unit_of_work import Database, SqlAlchemyUnitOfWork, StartupError

__all__ = [
    "Database",
    "SqlAlchemyCursorRepository",
    "SqlAlchemyDeadLetterRepository",
    "SqlAlchemyOrderRepository",
    "SqlAlchemyProofRepository",
    "SqlAlchemyProviderRepository",
    "SqlAlchemyUnitOfWork",
    "StartupError",
    "create_all_tables",
    "mapper_registry",
    "start_mappers",
]
