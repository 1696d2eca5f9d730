from __future__ import annotations

from typing import Any, Generic, Iterable, Optional, TypeVar
from uuid import UUID

from sqlalchemy import Executable, select

from lifecycle_api.core.errors import NotFound
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.repositories.query import QueryBuilder, QueryResult
from lifecycle_api.schemas.query import QueryOptions

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """
    Base class for repositories providing common helpers.

    Note:
      Every statement built here conjoins the context's tenant predicate. The
      repository never commits; the owning TenantContext transaction does.
    """

    model: type

    def __init__(self, context: TenantContext) -> None:
        self.context = context

    @property
    def session(self):
        return self.context.session

    async def execute(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute a SQLAlchemy statement."""
        return await self.session.execute(statement, params or {})

    async def scalars(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute and return scalars."""
        result = await self.execute(statement, params)
        return result.scalars()

    async def scalar_one_or_none(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute and return a single scalar or None."""
        result = await self.execute(statement, params)
        return result.scalar_one_or_none()

    def scoped(self, model: Optional[type] = None):
        """Select statement over ``model`` restricted to the current tenant."""
        model = model or self.model
        stmt = select(model)
        tenant = self.context.tenant_filter(model)
        if tenant is not None:
            stmt = stmt.where(tenant)
        return stmt

    async def get(self, entity_id: UUID, *, fresh: bool = False) -> Optional[ModelT]:
        """Load one row of the current tenant; ``fresh`` reloads attributes and eager relations."""
        stmt = self.scoped().where(self.model.id == entity_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        return await self.scalar_one_or_none(stmt)

    async def get_or_raise(self, entity_id: UUID, *, fresh: bool = False) -> ModelT:
        entity = await self.get(entity_id, fresh=fresh)
        if entity is None:
            raise NotFound(self.model.__name__, entity_id)
        return entity

    async def find_all(self, options: QueryOptions, *, allow_raw: bool = False) -> QueryResult:
        """Run a declarative query over this repository's model."""
        return await QueryBuilder(self.model, self.context, allow_raw=allow_raw).execute(options)

    async def create(self, **values: Any) -> ModelT:
        entity = self.model(**self.context.stamp(values, self.model))
        self.session.add(entity)
        await self.session.flush()
        return entity

    async def update(self, entity: ModelT, values: dict[str, Any]) -> ModelT:
        for key, value in values.items():
            setattr(entity, key, value)
        await self.session.flush()
        return entity

    async def delete(self, entity: ModelT) -> None:
        await self.session.delete(entity)
        await self.session.flush()

    async def add_all(self, entities: Iterable[Any]) -> None:
        """Add multiple entities to session."""
        self.session.add_all(list(entities))
        await self.session.flush()
