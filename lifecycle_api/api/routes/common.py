from __future__ import annotations

from typing import Any, Dict, Type

from pydantic import BaseModel

from lifecycle_api.db.models.equity import Grant, Plan, Schedule
from lifecycle_api.db.models.records import Attribute, StateMachine, Version
from lifecycle_api.db.models.security import Organisation, User
from lifecycle_api.repositories.query import QueryResult, decode_attribute_value
from lifecycle_api.schemas.auth import OrganisationRead, UserRead
from lifecycle_api.schemas.equity import GrantRead, PlanRead, ScheduleRead
from lifecycle_api.schemas.fsm import StateMachineRead, VersionRead
from lifecycle_api.schemas.query import Page, QueryOptions


class AttributeRead(BaseModel):
    key: str
    value: Any = None


READ_MODELS: Dict[type, Type[BaseModel]] = {
    Grant: GrantRead,
    Plan: PlanRead,
    Schedule: ScheduleRead,
    User: UserRead,
    Organisation: OrganisationRead,
    StateMachine: StateMachineRead,
    Version: VersionRead,
}


# PUBLIC_INTERFACE
def serialize(value: Any) -> Any:
    """Convert ORM entities (and lists of them) into their read models; other values pass through."""
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, Attribute):
        return AttributeRead(key=value.key, value=decode_attribute_value(value.value))
    model = READ_MODELS.get(type(value))
    if model is not None:
        return model.model_validate(value)
    return value


# PUBLIC_INTERFACE
def to_page(result: QueryResult, options: QueryOptions) -> Page:
    """Page envelope for a query result; entity rows are serialized, plain rows pass through."""
    return Page(count=result.count, page=options.page, limit=options.limit, rows=serialize(list(result.rows)))
