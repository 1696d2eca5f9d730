"""
Authorization guard for services.

Every coroutine method of a ``SecureService`` subclass is wrapped when the
class is created, so an operation added later is checked without any extra code.
The capability checked is ``"<ClassName>:<method_name>"``.

Methods are exempt only when listed in ``internal_operations``, merged along the
MRO. A leading underscore does not exempt anything: helper coroutines that run
under an already-checked operation are listed there by name like any other
exemption. Only dunder methods fall outside the guard.
"""
from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Callable, ClassVar, Dict, FrozenSet

from lifecycle_api.core.capabilities import Caller, capability_name, check_capability
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.services.base import BaseService

logger = logging.getLogger(__name__)

# Every guarded service class, by name.
SERVICE_REGISTRY: Dict[str, type["SecureService"]] = {}


# PUBLIC_INTERFACE
def guarded(capability: str) -> Callable:
    """Decorate a service coroutine so it checks ``capability`` before its body runs."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self: "SecureService", *args: Any, **kwargs: Any) -> Any:
            check_capability(self.caller.policies, capability)
            return await func(self, *args, **kwargs)

        wrapper.__capability__ = capability  # type: ignore[attr-defined]
        return wrapper

    return decorator


def _is_dunder(name: str) -> bool:
    return name.startswith("__") and name.endswith("__")


def _is_operation(name: str, value: Any) -> bool:
    return not _is_dunder(name) and inspect.iscoroutinefunction(value)


class SecureService(BaseService):
    """Service whose public operations require a capability held by the caller."""

    internal_operations: ClassVar[FrozenSet[str]] = frozenset({"start_transaction", "commit", "rollback"})

    def __init__(self, context: TenantContext, caller: Caller) -> None:
        super().__init__(context)
        self.caller = caller

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        exempt: set[str] = set()
        for klass in cls.__mro__:
            exempt.update(klass.__dict__.get("internal_operations", ()))
        cls.internal_operations = frozenset(exempt)

        for name, value in list(cls.__dict__.items()):
            if name in exempt or not _is_operation(name, value):
                continue
            if getattr(value, "__capability__", None) is not None:
                continue
            setattr(cls, name, guarded(capability_name(cls.__name__, name))(value))

        # Operations inherited from a parent are re-bound to this class's name.
        for klass in cls.__mro__[1:]:
            if not issubclass(klass, SecureService) or klass is SecureService:
                continue
            for name, value in klass.__dict__.items():
                if name in cls.__dict__ or name in exempt:
                    continue
                original = getattr(value, "__wrapped__", None)
                if original is None or getattr(value, "__capability__", None) is None:
                    continue
                setattr(cls, name, guarded(capability_name(cls.__name__, name))(original))

        SERVICE_REGISTRY[cls.__name__] = cls
        logger.debug("Registered guarded service %s", cls.__name__)

    # Transaction control delegates to the context and is never guarded.
    async def start_transaction(self):
        return await self.context.start_transaction()

    async def commit(self) -> None:
        await self.context.commit()

    async def rollback(self) -> None:
        await self.context.rollback()

    @classmethod
    def operations(cls) -> Dict[str, Any]:
        """Coroutine methods of the class, including inherited and exempt ones."""
        ops: Dict[str, Any] = {}
        for name in dir(cls):
            value = getattr(cls, name)
            if _is_operation(name, value):
                ops[name] = value
        return ops
