from __future__ import annotations

from lifecycle_api.db.registry import get_entity_registry
from lifecycle_api.repositories.query import QueryBuilder, QueryResult
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.tenant import TenantService


class QueryService(TenantService):
    """Declarative reads over any registered entity kind."""

    # PUBLIC_INTERFACE
    async def find_all(self, kind: str, options: QueryOptions) -> QueryResult:
        """List rows of ``kind`` ("grant", "Plan", ...) matching the request, scoped to the tenant."""
        model = get_entity_registry().resolve_kind(kind)
        return await QueryBuilder(model, self.context).execute(options)
