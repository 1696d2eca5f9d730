from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SortSpec(BaseModel):
    """One ordering term; ``field`` may be a dotted association path or a projected alias."""
    field: Union[str, Dict[str, Any]] = Field(..., description="Field, path, alias or expression")
    order: str = Field("ASC", description="ASC or DESC")

    @field_validator("order", mode="before")
    @classmethod
    def _normalize_order(cls, v):
        value = str(v or "ASC").upper()
        if value not in ("ASC", "DESC"):
            raise ValueError("order must be ASC or DESC")
        return value


class QueryOptions(BaseModel):
    """
    Declarative read request: projection, filters, ordering, grouping and paging.

    Field aliases (sortBy, sortOrder, groupBy, withAttributes) match the HTTP
    query parameter names.
    """
    model_config = ConfigDict(populate_by_name=True)

    attributes: Optional[List[Any]] = Field(None, description="Projection; strings or structured expressions")
    filters: Optional[Dict[str, Any]] = Field(None, description="Filter specification")
    sort: List[SortSpec] = Field(default_factory=list)
    sort_by: Optional[str] = Field(None, alias="sortBy")
    sort_order: str = Field("ASC", alias="sortOrder")
    page: Optional[int] = Field(None, ge=1)
    limit: Optional[int] = Field(None, ge=1, le=1000)
    group_by: Optional[List[str]] = Field(None, alias="groupBy")
    raw: bool = Field(False, description="Return plain rows instead of entities")
    nest: bool = Field(True, description="Keep attribute rows nested instead of flattening them")
    with_attributes: bool = Field(False, alias="withAttributes", description="Load sparse attributes")

    def sort_specs(self) -> List[SortSpec]:
        specs = list(self.sort)
        if self.sort_by:
            specs.append(SortSpec(field=self.sort_by, order=self.sort_order))
        return specs

    @property
    def offset(self) -> Optional[int]:
        if self.limit is None:
            return None
        return ((self.page or 1) - 1) * self.limit

    def row_mode(self) -> bool:
        return bool(self.attributes or self.group_by or self.raw or self.with_attributes)

    def merged(self, **overrides: Any) -> "QueryOptions":
        """Copy with some fields replaced; ``filters`` are and-combined with existing ones."""
        data = self.model_dump()
        extra_filters = overrides.pop("filters", None)
        data.update(overrides)
        if extra_filters:
            data["filters"] = (
                {"and": [self.filters, extra_filters]} if self.filters else extra_filters
            )
        return QueryOptions.model_validate(data)


class Page(BaseModel):
    """Paginated list envelope returned by list endpoints."""
    count: int = Field(..., description="Number of matching rows before paging")
    page: Optional[int] = None
    limit: Optional[int] = None
    rows: List[Any] = Field(default_factory=list)
