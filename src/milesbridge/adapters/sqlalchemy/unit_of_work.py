"""SQLAlchemy-backed units of work for the order lifecycle."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from milesbridge.adapters.sqlalchemy.mappings import start_mappers
from milesbridge.adapters.sqlalchemy.migrations import upgrade_head
from milesbridge.adapters.sqlalchemy.repositories import (
    SqlAlchemyCursorRepository,
    SqlAlchemyDeadLetterRepository,
    SqlAlchemyOrderRepository,
    SqlAlchemyProofRepository,
    SqlAlchemyProviderRepository,
)
from milesbridge.config import get_database_config
from milesbridge.domain.ports.unit_of_work import MarketplaceRepositories, RepositoryCollection

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used outside its session scope."""


class Database:
    """Owns the engine and session factory shared by all units of work.

    One instance is built by the composition root and handed to everything that
    needs persistence, so tests can run against an isolated in-memory engine.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.session_factory: sessionmaker[Session] = sessionmaker(
            bind=engine, expire_on_commit=False
        )

    @classmethod
    def connect(
        cls,
        *,
        engine: Engine | None = None,
        database_uri: str | None = None,
        migrate: bool = True,
    ) -> Database:
        """Create the engine, configure mappers and bring the schema to head."""

        resolved_engine = engine or create_engine(
            database_uri or get_database_config().uri, future=True
        )
        start_mappers()
        if migrate:
            upgrade_head(engine=resolved_engine)
        log.info("Database ready at %s", resolved_engine.url.render_as_string(hide_password=True))
        return cls(resolved_engine)

    def unit_of_work(self) -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(self)

    def dispose(self) -> None:
        self.engine.dispose()


class BaseSqlAlchemyUnitOfWork[TRepositories: RepositoryCollection](ABC):
    """Generic SQLAlchemy unit of work with pluggable repository collections."""

    def __init__(self, database: Database) -> None:
        self.session_factory: sessionmaker[Session] = database.session_factory
        self._session: Session | None = None

    @abstractmethod
    def _build_repositories(self, session: Session) -> TRepositories: ...

    def __enter__(self) -> BaseSqlAlchemyUnitOfWork[TRepositories]:
        self.session = self.session_factory()
        self._repositories = self._build_repositories(self.session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        # closing discards uncommitted work but keeps loaded entities readable
        self.session.close()
        self.session = None
        return False

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> TRepositories:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session

    @session.setter
    def session(self, session: Session | None) -> None:
        if self._session is not None and session is not None:
            raise StartupError("Unit of work session already initialised")
        self._session = session


class SqlAlchemyUnitOfWork(BaseSqlAlchemyUnitOfWork[MarketplaceRepositories]):
    """Unit of work managing SQLAlchemy sessions for orders and their records."""

    def _build_repositories(self, session: Session) -> MarketplaceRepositories:
        return MarketplaceRepositories(
            orders=SqlAlchemyOrderRepository(session),
            proofs=SqlAlchemyProofRepository(session),
            providers=SqlAlchemyProviderRepository(session),
            dead_letters=SqlAlchemyDeadLetterRepository(session),
            cursors=SqlAlchemyCursorRepository(session),
        )


if TYPE_CHECKING:
    from milesbridge.domain.ports.unit_of_work import MarketplaceUnitOfWork

    def _uow_check(database: Database) -> MarketplaceUnitOfWork:
        return SqlAlchemyUnitOfWork(database)
