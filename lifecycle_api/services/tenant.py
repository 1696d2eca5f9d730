from __future__ import annotations

import logging

from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.errors import TenantMismatch, TenantNotConfigured
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.services.secure import SecureService

logger = logging.getLogger(__name__)


class TenantService(SecureService):
    """
    Guarded service bound to one tenant.

    Construction fails fast when the context names no tenant and is not
    explicitly unsafe, or when the caller belongs to another tenant.
    """

    def __init__(self, context: TenantContext, caller: Caller) -> None:
        if not context.is_configured:
            raise TenantNotConfigured()
        if not context.tenant_unsafe and caller.tenant_id is not None and caller.tenant_id != context.tenant_id:
            logger.warning("Caller %s of tenant %s addressed tenant %s", caller.user_id, caller.tenant_id, context.tenant_id)
            raise TenantMismatch(context.tenant_id)
        super().__init__(context, caller)

    @property
    def tenant_id(self):
        return self.context.tenant_id
