"""
Database package initializer exposing configuration, engine/session management
and the entity registry.
"""

from .base import Base
from .config import get_settings, Settings
from .session import (
    create_all,
    dispose_engine,
    get_engine,
    get_async_session,
    make_session_maker,
)

# Import models to ensure they are registered with SQLAlchemy metadata
# when the db package is imported.
from . import models as models  # noqa: F401
from .registry import EntityRegistry, get_entity_registry

__all__ = [
    "Base",
    "Settings",
    "get_settings",
    "create_all",
    "dispose_engine",
    "get_engine",
    "get_async_session",
    "make_session_maker",
    "EntityRegistry",
    "get_entity_registry",
    "models",
]
