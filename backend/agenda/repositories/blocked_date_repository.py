from datetime import date
import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import BlockedDate
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BlockedDateRepository(BaseRepository[BlockedDate]):
    def __init__(self, db: Session):
        super().__init__(db, BlockedDate)
        self.logger = logging.getLogger(__name__)

    def get_for_date(self, target_date: date) -> Optional[BlockedDate]:
        try:
            return self.db.query(BlockedDate).filter(BlockedDate.date == target_date).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking blocked date: {str(e)}")
            raise RepositoryException(f"Failed to check blocked date: {str(e)}")

    def is_blocked(self, target_date: date) -> bool:
        return self.get_for_date(target_date) is not None

    def get_in_range(self, start_date: date, end_date: date) -> Dict[date, BlockedDate]:
        """Blocked dates keyed by date, both bounds inclusive."""
        try:
            rows = (
                self.db.query(BlockedDate)
                .filter(BlockedDate.date >= start_date, BlockedDate.date <= end_date)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading blocked dates: {str(e)}")
            raise RepositoryException(f"Failed to load blocked dates: {str(e)}")
        return {row.date: row for row in rows}

    def list_dates(self, from_date: Optional[date] = None, to_date: Optional[date] = None) -> List[BlockedDate]:
        query = self._build_query()
        if from_date is not None:
            query = query.filter(BlockedDate.date >= from_date)
        if to_date is not None:
            query = query.filter(BlockedDate.date <= to_date)
        return self._execute_query(query.order_by(BlockedDate.date))

    def add(self, target_date: date, reason: Optional[str] = None) -> BlockedDate:
        """
        Insert a blocked date.

        Raises RepositoryException("already exists") on a duplicate date.
        """
        try:
            with self.db.begin_nested():
                row = BlockedDate(date=target_date, reason=reason)
                self.db.add(row)
                self.db.flush()
            return row
        except IntegrityError as exc:
            raise RepositoryException(f"Blocked date {target_date} already exists") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error adding blocked date: {str(e)}")
            raise RepositoryException(f"Failed to add blocked date: {str(e)}")

    def delete_many(self, ids: List[str]) -> int:
        if not ids:
            return 0
        try:
            count = (
                self.db.query(BlockedDate)
                .filter(BlockedDate.id.in_(ids))
                .delete(synchronize_session=False)
            )
            self.db.flush()
            return int(count)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to delete blocked dates: {str(e)}")
