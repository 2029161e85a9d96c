"""
Base repository class for data access layer.

Repositories own every query the sync layer issues, so services stay free
of SQLAlchemy details and tests can swap them out.

Example:
    class PlayerRepository(BaseRepository[Player]):
        def find_by_username(self, username: str) -> Optional[Player]:
            return self.where_first(func.lower(Player.username) == username.lower())
"""
from abc import ABC
from typing import TypeVar, Generic, Type, Optional, List, Any, Dict
from sqlalchemy import func
from sqlalchemy.orm import Query, Session

T = TypeVar("T")


class BaseRepository(Generic[T], ABC):
    """
    Base repository class providing common data access methods.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    # ========================================================================
    # CRUD Operations
    # ========================================================================

    def find_by_id(self, id: Any) -> Optional[T]:
        """Find a single record by primary key."""
        return self.db.get(self.model_type, id)

    def create(self, **kwargs) -> T:
        """
        Create a new record.

        Returns:
            The created record (added to the session, not yet committed)
        """
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        return instance

    def create_many(self, items: List[Dict[str, Any]]) -> List[T]:
        """
        Create multiple records in one batch.

        Args:
            items: List of dictionaries with record data

        Returns:
            List of created records (not yet committed)
        """
        instances = [self.model_type(**item) for item in items]
        self.db.add_all(instances)
        return instances

    def delete(self, instance: T) -> None:
        self.db.delete(instance)

    # ========================================================================
    # Query Builders
    # ========================================================================

    def query(self) -> Query:
        """Get a new query object for this model."""
        return self.db.query(self.model_type)

    def where(self, *criterion) -> List[T]:
        """Filter records using SQLAlchemy expressions."""
        return self.db.query(self.model_type).filter(*criterion).all()

    def where_first(self, *criterion) -> Optional[T]:
        """Filter records using SQLAlchemy expressions and return first match."""
        return self.db.query(self.model_type).filter(*criterion).first()

    def exists_where(self, *criterion) -> bool:
        """Check if any record matching the criterion exists."""
        return self.db.query(
            self.db.query(self.model_type).filter(*criterion).exists()
        ).scalar()

    def count(self, *criterion) -> int:
        """Count records matching optional criterion."""
        query = self.db.query(func.count()).select_from(self.model_type)
        if criterion:
            query = query.filter(*criterion)
        return query.scalar() or 0

    # ========================================================================
    # Save Operations
    # ========================================================================

    def save(self) -> None:
        """Commit pending changes to the database."""
        self.db.commit()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.db.flush()

    def refresh(self, instance: T) -> T:
        """Refresh an instance from the database."""
        self.db.refresh(instance)
        return instance

    def rollback(self) -> None:
        """Rollback pending changes."""
        self.db.rollback()
