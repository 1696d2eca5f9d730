from __future__ import annotations

from lifecycle_api.core.tenancy import TenantContext


class BaseService:
    """
    Base class for services. Holds the request's TenantContext, and through it
    the session, for use across multiple repositories.

    Services keep business logic and orchestration, delegating data access
    to repositories.
    """

    def __init__(self, context: TenantContext) -> None:
        self.context = context

    @property
    def session(self):
        return self.context.session
