from __future__ import annotations

from lifecycle_api.repositories.query import QueryResult
from lifecycle_api.repositories.records import VersionRepository
from lifecycle_api.schemas.query import QueryOptions, SortSpec
from lifecycle_api.services.tenant import TenantService


class VersionService(TenantService):
    """Read access to the transition audit trail."""

    def __init__(self, context, caller) -> None:
        super().__init__(context, caller)
        self.versions = VersionRepository(context)

    # PUBLIC_INTERFACE
    async def get_versions(self, options: QueryOptions) -> QueryResult:
        """
        List recorded transitions, newest first unless the request sorts otherwise.

        Filters may traverse the actor, e.g. {"Actor.email": {"like": "ops"}}.
        """
        if not options.sort_specs():
            options = options.model_copy(update={"sort": [SortSpec(field="created_at", order="DESC")]})
        return await self.versions.find_all(options)
