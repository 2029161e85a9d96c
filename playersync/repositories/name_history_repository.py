"""
Username change log repository.
"""
import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from playersync.models import NameHistory
from playersync.repositories.base import BaseRepository
from playersync.utils.time import truncate_to_minute

logger = logging.getLogger(__name__)


class NameHistoryRepository(BaseRepository[NameHistory]):
    """Repository for NameHistory rows."""

    def __init__(self, db: Session):
        super().__init__(NameHistory, db)

    def record_change(self, user_id: str, old_username: str, new_username: str, changed_at: datetime) -> bool:
        """
        Log a username change, collapsing repeats within the same minute.

        Returns:
            True if a new row was written
        """
        minute = truncate_to_minute(changed_at)
        if self.exists_where(NameHistory.user_id == user_id, NameHistory.changed_at == minute):
            return False

        try:
            with self.db.begin_nested():
                self.create(
                    user_id=user_id,
                    changed_at=minute,
                    old_username=old_username,
                    new_username=new_username,
                )
        except IntegrityError:
            # A concurrent resolution logged the same change first
            logger.debug(f"Name change for {user_id} at {minute} already recorded")
            return False
        return True
