# backend/agenda/repositories/base_repository.py
"""
Base repository for the agenda models.

Repositories flush but never commit; services own the transaction through
``BaseService.transaction()``. Driver errors leave this layer as
RepositoryException.
"""

from contextlib import contextmanager
import logging
from typing import Any, Generic, Iterator, List, Optional, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Lookups and deletes shared by every single-model repository."""

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            self.logger.error(f"Error trying to {action} ({self.model.__name__}): {str(e)}")
            raise RepositoryException(f"Failed to {action}: {str(e)}")

    def get_by_id(self, id: str) -> Optional[T]:
        with self._guard(f"load {self.model.__name__} {id}"):
            return self.db.get(self.model, id)

    def delete(self, id: str) -> bool:
        """Delete by primary key; False when no such row exists."""
        with self._guard(f"delete {self.model.__name__} {id}"):
            entity = self.db.get(self.model, id)
            if entity is None:
                return False
            self.db.delete(entity)
            self.db.flush()
            return True

    def find_by(self, **criteria: Any) -> List[T]:
        with self._guard("filter records"):
            return self.db.query(self.model).filter_by(**criteria).all()

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        with self._guard("run query"):
            return query.all()
