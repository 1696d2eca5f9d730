"""
ORM models for organisations, access control, equity entities, vesting
schedules, sparse attributes and the transition audit trail.

Importing this package ensures model classes are registered with the Base
metadata, which the entity registry and table creation rely on.
"""

from .security import (  # noqa: F401
    Organisation,
    User,
    Role,
    Permission,
    FsmGrantRecord,
    UserRole,
    RolePermission,
)
from .equity import (  # noqa: F401
    Plan,
    Grant,
    Vest,
    Schedule,
)
from .records import (  # noqa: F401
    Attribute,
    StateMachine,
    Version,
)
