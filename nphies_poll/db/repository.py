"""Base repository class with common CRUD operations."""

from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from nphies_poll.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository providing common CRUD operations for all models.

    This class implements the repository pattern, providing a clean
    abstraction over database operations. Commits are left to the
    owning UnitOfWork.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def create(self, **kwargs) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Field values for the new record

        Returns:
            Created model instance
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """
        Get a record by ID.

        Args:
            id: Record ID

        Returns:
            Model instance or None if not found
        """
        result = await self.session.execute(
            select(self.model).where(self.model.id == id)  # type: ignore
        )
        return result.scalar_one_or_none()

    async def get_by_field(self, field_name: str, value: Any) -> Optional[ModelType]:
        """
        Get a record by a specific field value.

        Args:
            field_name: Name of the field to search
            value: Value to search for

        Returns:
            Model instance or None if not found
        """
        field = getattr(self.model, field_name)
        result = await self.session.execute(select(self.model).where(field == value))
        return result.scalars().first()

    async def filter(self, **filters) -> List[ModelType]:
        """
        Filter records by field values.

        Supports comparison operators using double underscore syntax:
        - field__lt / field__lte / field__gt / field__gte
        - field__ne: not equal
        - field (no suffix): equal

        Args:
            **filters: Field name and value pairs

        Returns:
            List of matching model instances

        Examples:
            # Poll logs started before a cutoff
            await repo.filter(started_at__lt=cutoff)
        """
        query = self._apply_filters(select(self.model), filters)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    def _apply_filters(self, query, filters: dict):
        """
        Apply filters to a query with comparison operator support.

        Args:
            query: SQLAlchemy select or update statement
            filters: Field name and value pairs with optional comparison operators

        Returns:
            Modified query
        """
        for filter_key, value in filters.items():
            if "__" in filter_key:
                field_name, operator = filter_key.rsplit("__", 1)
            else:
                field_name = filter_key
                operator = "eq"

            field = getattr(self.model, field_name)

            if operator == "ne":
                query = query.where(field != value)
            elif operator == "lt":
                query = query.where(field < value)
            elif operator == "lte":
                query = query.where(field <= value)
            elif operator == "gt":
                query = query.where(field > value)
            elif operator == "gte":
                query = query.where(field >= value)
            else:
                query = query.where(field == value)

        return query

    async def update(self, id: int, **kwargs) -> Optional[ModelType]:
        """
        Update a record by ID.

        Args:
            id: Record ID
            **kwargs: Fields to update with their new values

        Returns:
            Updated model instance or None if not found
        """
        await self.session.execute(
            update(self.model)
            .where(self.model.id == id)  # type: ignore
            .values(**kwargs)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        instance = await self.get_by_id(id)
        if instance is not None:
            await self.session.refresh(instance)
        return instance

    async def count(self, **filters) -> int:
        """
        Count records matching the given filters.

        Accepts the same operator suffixes as `filter`.

        Args:
            **filters: Field name and value pairs

        Returns:
            Number of matching records
        """
        query = select(func.count(self.model.id))  # type: ignore
        query = self._apply_filters(query, filters)

        result = await self.session.execute(query)
        return result.scalar() or 0
