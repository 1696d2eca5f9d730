from __future__ import annotations

from typing import List

from lifecycle_api.db.models.security import Role
from lifecycle_api.repositories.security import SecurityRepository
from lifecycle_api.services.tenant import TenantService

# Platform-level roles organisations never see or assign.
HIDDEN_ROLES = frozenset({"SuperAdmin"})


class RoleService(TenantService):
    """Roles an organisation can assign: its own plus the global ones."""

    def __init__(self, context, caller) -> None:
        super().__init__(context, caller)
        self.security = SecurityRepository(context)

    # PUBLIC_INTERFACE
    async def get_roles(self) -> List[Role]:
        return [role for role in await self.security.list_roles() if role.name not in HIDDEN_ROLES]
