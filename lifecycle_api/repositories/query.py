"""
Declarative query translation.

Turns a ``QueryOptions`` request (projection, filters, ordering, grouping,
paging) into SQLAlchemy statements over a mapped entity kind.

Filters
    ``{"status": "active"}`` equality, ``{"status": ["a", "b"]}`` membership,
    ``{"granted": {"gte": 10}}`` operator objects, ``{"Plan.name": ...}``
    association paths, ``{"Attributes.color": ...}`` sparse attributes and
    ``{"or": [...]}`` / ``{"and": [...]}`` groups, nested freely.

Projection
    Plain strings are parsed into a small expression grammar (``Field``,
    ``Aliased``, ``Aggregate``, ``Literal``, ``Raw``); structured dicts map onto
    the same variants directly.
"""
from __future__ import annotations

import json
import logging
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy import Float, String, and_, cast, distinct, false, func, inspect, literal, literal_column, or_, select
from sqlalchemy.orm import aliased
from sqlalchemy.sql import ColumnElement, Select

from lifecycle_api.core.errors import InvalidQuery, UnresolvedSortPath
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.db.models import Attribute
from lifecycle_api.db.registry import EntityRegistry, get_entity_registry
from lifecycle_api.schemas.query import QueryOptions, SortSpec

logger = logging.getLogger(__name__)

ATTRIBUTES_PREFIX = "Attributes."
ATTRIBUTE_KEY_COLUMN = "Attributes.key"
ATTRIBUTE_VALUE_COLUMN = "Attributes.value"
COMBINATORS = ("or", "and")
AGGREGATES = ("count", "sum", "avg", "max", "min", "group_concat", "json_arrayagg")


# ---------------------------------------------------------------------------
# Expression grammar
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Field:
    path: str

    @property
    def name(self) -> str:
        return self.path


@dataclass(frozen=True)
class Aliased:
    expr: "Expression"
    name: str


@dataclass(frozen=True)
class Aggregate:
    fn: str
    column: str
    name: str
    distinct: bool = False


@dataclass(frozen=True)
class Literal:
    value: Any
    name: str


@dataclass(frozen=True)
class Raw:
    expr: str
    name: str


Expression = Union[Field, Aliased, Aggregate, Literal, Raw]

_ALIAS_RE = re.compile(r"^(?P<expr>.+?)\s+as\s+(?P<alias>[\w.]+)$", re.IGNORECASE | re.DOTALL)
_AGGREGATE_RE = re.compile(
    r"^(?P<fn>count|sum|avg|max|min|group_concat|json_arrayagg)\s*\(\s*"
    r"(?P<distinct>distinct\s+)?(?P<column>\*|[\w.]+)\s*\)$",
    re.IGNORECASE,
)
_DISTINCT_RE = re.compile(r"^distinct\s*\(\s*(?P<column>[\w.]+)\s*\)$|^distinct\s+(?P<bare>[\w.]+)$", re.IGNORECASE)
_CASE_RE = re.compile(r"\bcase\b", re.IGNORECASE)
_FIELD_RE = re.compile(r"^[\w.]+$")


# PUBLIC_INTERFACE
def parse_attribute(spec: Any) -> Expression:
    """
    Parse one projection entry into an expression.

    Accepted forms::

        "status"                         Field
        "Plan.name"                      Field through an association
        "Attributes.color"               sparse attribute value
        ["status", "state"]              Aliased
        "sum(granted) as total"          Aggregate
        "count(distinct user_id)"        Aggregate with DISTINCT
        "distinct(status)"               DISTINCT column
        "case when ... end as bucket"    Raw
        {"field": ..., "as": ...}
        {"fn": ..., "column": ..., "as": ..., "distinct": bool}
        {"literal": ..., "as": ...}
        {"raw": ..., "as": ...}
    """
    if isinstance(spec, Mapping):
        return _parse_structured(spec)
    if isinstance(spec, (list, tuple)):
        if len(spec) != 2 or not isinstance(spec[1], str):
            raise InvalidQuery(f"Attribute pair must be [expression, alias]: {spec!r}")
        return _with_name(parse_attribute(spec[0]), spec[1])
    if not isinstance(spec, str) or not spec.strip():
        raise InvalidQuery(f"Unsupported attribute: {spec!r}")

    text = spec.strip()
    if _CASE_RE.search(text):
        match = _ALIAS_RE.match(text)
        if match and not _CASE_RE.search(match.group("alias")):
            return Raw(match.group("expr").strip(), match.group("alias"))
        return Raw(text, text)

    match = _ALIAS_RE.match(text)
    if match:
        return _with_name(parse_attribute(match.group("expr")), match.group("alias"))

    match = _AGGREGATE_RE.match(text)
    if match:
        fn = match.group("fn").lower()
        return Aggregate(fn, match.group("column"), fn, distinct=bool(match.group("distinct")))

    match = _DISTINCT_RE.match(text)
    if match:
        column = match.group("column") or match.group("bare")
        return Aggregate("distinct", column, column)

    if _FIELD_RE.match(text):
        return Field(text)
    raise InvalidQuery(f"Unsupported attribute expression: {text!r}")


def _parse_structured(spec: Mapping) -> Expression:
    name = spec.get("as")
    if "field" in spec:
        expr: Expression = Field(str(spec["field"]))
        return _with_name(expr, name) if name else expr
    if "fn" in spec:
        fn = str(spec["fn"]).lower()
        if fn not in AGGREGATES and fn != "distinct":
            raise InvalidQuery(f"Unsupported aggregate function: {fn}")
        column = str(spec.get("column", "*"))
        return Aggregate(fn, column, name or fn, distinct=bool(spec.get("distinct", False)))
    if "literal" in spec:
        if not name:
            raise InvalidQuery("Literal attributes need an alias ('as')")
        return Literal(spec["literal"], name)
    if "raw" in spec:
        return Raw(str(spec["raw"]), name or str(spec["raw"]))
    raise InvalidQuery(f"Unsupported attribute: {dict(spec)!r}")


def _with_name(expr: Expression, name: str) -> Expression:
    if isinstance(expr, Field):
        return Aliased(expr, name)
    if isinstance(expr, Aliased):
        return Aliased(expr.expr, name)
    if isinstance(expr, Aggregate):
        return Aggregate(expr.fn, expr.column, name, expr.distinct)
    if isinstance(expr, Literal):
        return Literal(expr.value, name)
    return Raw(expr.expr, name)


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------

# PUBLIC_INTERFACE
def encode_attribute_value(value: Any) -> str:
    """Encode a sparse attribute value the way it is stored."""
    return json.dumps(value)


# PUBLIC_INTERFACE
def decode_attribute_value(value: Any) -> Any:
    """Unquote a stored JSON scalar; anything that is not valid JSON is returned as-is."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return value


def _coerce(column: ColumnElement, value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_coerce(column, v) for v in value]
    if not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except (NotImplementedError, AttributeError):
        return value
    try:
        if python_type is uuid.UUID:
            return uuid.UUID(value)
        if python_type is datetime:
            return datetime.fromisoformat(value)
        if python_type is date:
            return date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidQuery(f"Invalid value {value!r}: {exc}") from exc
    return value


# ---------------------------------------------------------------------------
# Joins
# ---------------------------------------------------------------------------

class JoinSet:
    """Outer joins required by the paths a statement references, in dependency order."""

    def __init__(self, model: type, context: TenantContext, registry: EntityRegistry) -> None:
        self.model = model
        self.kind = model.__name__
        self.context = context
        self.registry = registry
        self._paths: Dict[tuple[str, ...], tuple[Any, str]] = {}
        self._relations: List[Any] = []
        self._attributes: Dict[str, Any] = {}
        self._attribute_clauses: List[tuple[Any, ColumnElement]] = []
        # Set once a joined path crosses a to-many association.
        self.fans_out = False

    def entity(self, segments: Sequence[str], on_missing: Callable[[], Exception]) -> Any:
        """Aliased entity reached by following association names from the root."""
        current, kind = self.model, self.kind
        for i, segment in enumerate(segments):
            key = tuple(segments[: i + 1])
            if key in self._paths:
                current, kind = self._paths[key]
                continue
            assoc = self.registry.resolve_association(kind, segment)
            if assoc is None:
                raise on_missing()
            target = aliased(self.registry.model(assoc.target_kind), name="j_" + "_".join(key).lower())
            self._relations.append(getattr(current, assoc.name).of_type(target))
            self._paths[key] = (target, assoc.target_kind)
            self.fans_out = self.fans_out or assoc.uselist
            current, kind = target, assoc.target_kind
        return current

    def attribute_value(self, key: str) -> ColumnElement:
        """Value column of the sparse attribute ``key`` for the root entity."""
        if key not in self._attributes:
            attr = aliased(Attribute, name=f"attr_{len(self._attributes)}")
            onclause = and_(
                attr.entity_id == self.model.id,
                attr.entity_kind == self.kind,
                attr.key == key,
            )
            tenant = self.context.tenant_filter(attr)
            if tenant is not None:
                onclause = and_(onclause, tenant)
            self._attributes[key] = attr
            self._attribute_clauses.append((attr, onclause))
        return self._attributes[key].value

    @property
    def empty(self) -> bool:
        return not self._relations and not self._attribute_clauses

    def apply(self, stmt: Select) -> Select:
        for relation in self._relations:
            stmt = stmt.outerjoin(relation)
        for attr, onclause in self._attribute_clauses:
            stmt = stmt.outerjoin(attr, onclause)
        return stmt


def _is_private(prop: Any) -> bool:
    return any(column.info.get("private") for column in prop.columns)


def column_of(entity: Any, name: str) -> Optional[ColumnElement]:
    """Mapped column ``name`` of an entity or alias; None when missing or marked private."""
    mapper = inspect(entity).mapper
    prop = mapper.column_attrs.get(name)
    if prop is None or _is_private(prop):
        return None
    return getattr(entity, name)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

@dataclass
class QueryResult:
    rows: List[Any]
    count: int


class QueryBuilder:
    """
    Compile and run a QueryOptions request against one entity kind.

    Raw SQL expressions (``Raw``) are refused unless ``allow_raw`` is set; only
    server-side callers should enable it.
    """

    def __init__(
        self,
        model: type,
        context: TenantContext,
        *,
        registry: Optional[EntityRegistry] = None,
        allow_raw: bool = False,
    ) -> None:
        self.model = model
        self.kind = model.__name__
        self.context = context
        self.registry = registry or get_entity_registry()
        self.allow_raw = allow_raw
        bind = context.session.bind
        self.dialect = bind.dialect.name if bind is not None else "default"
        self._decoded_labels: set[str] = set()

    # -- columns ---------------------------------------------------------

    def _column(self, path: str, joins: JoinSet, on_missing: Optional[Callable[[], Exception]] = None) -> ColumnElement:
        if not isinstance(path, str) or not path:
            raise InvalidQuery(f"Invalid field: {path!r}")
        missing = on_missing or (lambda: InvalidQuery(f"Unknown field '{path}' on {self.kind}"))
        if path.startswith(ATTRIBUTES_PREFIX):
            key = path[len(ATTRIBUTES_PREFIX):]
            if not key:
                raise missing()
            return joins.attribute_value(key)
        segments = path.split(".")
        entity = joins.entity(segments[:-1], missing) if len(segments) > 1 else self.model
        column = column_of(entity, segments[-1])
        if column is None:
            raise missing()
        return column

    # -- filters ---------------------------------------------------------

    # PUBLIC_INTERFACE
    def where(self, filters: Optional[Mapping], joins: JoinSet) -> Optional[ColumnElement]:
        """Translate a filter specification into one boolean clause (None when empty)."""
        if not filters:
            return None
        if not isinstance(filters, Mapping):
            raise InvalidQuery(f"Filters must be an object, got {type(filters).__name__}")
        clauses: List[ColumnElement] = []
        for key, value in filters.items():
            if not isinstance(key, str):
                raise InvalidQuery(f"Invalid filter key: {key!r}")
            combinator = key.lower()
            if combinator in COMBINATORS:
                clauses.append(self._group(combinator, value, joins))
            else:
                clauses.append(self._predicate(key, value, joins))
        return clauses[0] if len(clauses) == 1 else and_(*clauses)

    def _group(self, combinator: str, value: Any, joins: JoinSet) -> ColumnElement:
        if not isinstance(value, (list, tuple)):
            raise InvalidQuery(f"'{combinator}' expects an array of filters")
        parts = [c for c in (self.where(item, joins) for item in value) if c is not None]
        if not parts:
            # An empty "or" matches nothing; an empty "and" matches everything.
            return false() if combinator == "or" else and_(True)
        return or_(*parts) if combinator == "or" else and_(*parts)

    def _predicate(self, key: str, value: Any, joins: JoinSet) -> ColumnElement:
        column = self._column(key, joins)
        sparse = key.startswith(ATTRIBUTES_PREFIX)
        if isinstance(value, Mapping):
            if not value:
                raise InvalidQuery(f"Empty operator object for '{key}'")
            clauses = [self._operator(column, op, operand, sparse, key) for op, operand in value.items()]
            return clauses[0] if len(clauses) == 1 else and_(*clauses)
        if isinstance(value, (list, tuple)):
            return column.in_(self._operand(column, list(value), sparse))
        if value is None:
            return column.is_(None)
        return column == self._operand(column, value, sparse)

    def _operand(self, column: ColumnElement, value: Any, sparse: bool) -> Any:
        if sparse:
            if isinstance(value, list):
                return [encode_attribute_value(v) for v in value]
            return encode_attribute_value(value)
        return _coerce(column, value)

    def _operator(self, column: ColumnElement, op: str, operand: Any, sparse: bool, key: str) -> ColumnElement:
        if op == "eq":
            return column.is_(None) if operand is None else column == self._operand(column, operand, sparse)
        if op == "ne":
            return column.is_not(None) if operand is None else column != self._operand(column, operand, sparse)
        if op in ("gt", "gte", "lt", "lte"):
            target = column
            if sparse and isinstance(operand, (int, float)) and not isinstance(operand, bool):
                target = cast(column, Float)
                value = operand
            else:
                value = self._operand(column, operand, sparse)
            return {
                "gt": target > value,
                "gte": target >= value,
                "lt": target < value,
                "lte": target <= value,
            }[op]
        if op == "like":
            return column.like(f"%{operand}%")
        if op == "notLike":
            return column.not_like(f"%{operand}%")
        if op == "iLike":
            return column.ilike(f"%{operand}%")
        if op in ("in", "notIn"):
            if not isinstance(operand, (list, tuple)):
                raise InvalidQuery(f"'{op}' on '{key}' expects an array")
            values = self._operand(column, list(operand), sparse)
            return column.in_(values) if op == "in" else column.not_in(values)
        if op == "between":
            if not isinstance(operand, (list, tuple)) or len(operand) != 2:
                raise InvalidQuery(f"'between' on '{key}' expects [low, high]")
            low, high = (self._operand(column, v, sparse) for v in operand)
            return column.between(low, high)
        if op == "is":
            return column.is_(operand)
        if op == "not":
            return column.is_not(operand)
        raise InvalidQuery(f"Unsupported operator '{op}' on '{key}'")

    # -- projection --------------------------------------------------------

    # PUBLIC_INTERFACE
    def project(self, attributes: Sequence[Any], joins: JoinSet) -> Dict[str, ColumnElement]:
        """Compile projection entries into labelled columns keyed by label."""
        labels: Dict[str, ColumnElement] = {}
        for spec in attributes:
            expr = parse_attribute(spec)
            labels[expr.name] = self._compile(expr, joins).label(expr.name)
        return labels

    def _compile(self, expr: Expression, joins: JoinSet) -> ColumnElement:
        if isinstance(expr, Field):
            if expr.path.startswith(ATTRIBUTES_PREFIX):
                self._decoded_labels.add(expr.name)
            return self._column(expr.path, joins)
        if isinstance(expr, Aliased):
            if isinstance(expr.expr, Field) and expr.expr.path.startswith(ATTRIBUTES_PREFIX):
                self._decoded_labels.add(expr.name)
            return self._compile(expr.expr, joins)
        if isinstance(expr, Aggregate):
            return self._aggregate(expr, joins)
        if isinstance(expr, Literal):
            return literal(expr.value)
        if not self.allow_raw:
            raise InvalidQuery(f"Raw expressions are not accepted: {expr.expr!r}")
        return literal_column(expr.expr)

    def _aggregate(self, expr: Aggregate, joins: JoinSet) -> ColumnElement:
        if expr.column == "*":
            if expr.fn != "count":
                raise InvalidQuery(f"'{expr.fn}(*)' is not supported")
            return func.count()
        column = self._column(expr.column, joins)
        if expr.column.startswith(ATTRIBUTES_PREFIX) and expr.fn in ("sum", "avg"):
            column = cast(column, Float)
        if expr.fn == "distinct":
            return distinct(column)
        if expr.distinct:
            column = distinct(column)
        if expr.fn == "group_concat":
            if self.dialect == "postgresql":
                return func.string_agg(cast(column, String), literal(","))
            return func.group_concat(column)
        if expr.fn == "json_arrayagg":
            if self.dialect == "postgresql":
                return func.json_agg(column)
            if self.dialect == "sqlite":
                return func.json_group_array(column)
            return func.json_arrayagg(column)
        return getattr(func, expr.fn)(column)

    # -- ordering and grouping ---------------------------------------------

    # PUBLIC_INTERFACE
    def order_by(
        self, specs: Sequence[SortSpec], joins: JoinSet, labels: Optional[Mapping[str, ColumnElement]] = None
    ) -> List[ColumnElement]:
        """
        Resolve sort terms.

        Raises:
            UnresolvedSortPath: when a dotted path names an association no entity exposes.
        """
        return [
            column.desc() if descending else column.asc()
            for column, descending in self._sort_terms(specs, joins, labels)
        ]

    def _sort_terms(
        self, specs: Sequence[SortSpec], joins: JoinSet, labels: Optional[Mapping[str, ColumnElement]] = None
    ) -> List[tuple[ColumnElement, bool]]:
        return [(self._sort_column(spec.field, joins, labels or {}), spec.order == "DESC") for spec in specs]

    def _sort_column(self, field: Any, joins: JoinSet, labels: Mapping[str, ColumnElement]) -> ColumnElement:
        if isinstance(field, Mapping):
            return self._compile(parse_attribute(field), joins)
        if field in labels:
            return labels[field]
        if field.startswith(ATTRIBUTES_PREFIX) or "." not in field:
            return self._column(field, joins)
        return self._column(field, joins, on_missing=lambda: UnresolvedSortPath(field))

    def group_by(
        self, fields: Sequence[str], joins: JoinSet, labels: Mapping[str, ColumnElement]
    ) -> List[ColumnElement]:
        return [labels[f] if f in labels else self._column(f, joins) for f in fields]

    # -- statements ----------------------------------------------------------

    def _scoped(self, stmt: Select, joins: JoinSet, condition: Optional[ColumnElement]) -> Select:
        stmt = joins.apply(stmt)
        tenant = self.context.tenant_filter(self.model)
        if tenant is not None:
            stmt = stmt.where(tenant)
        if condition is not None:
            stmt = stmt.where(condition)
        return stmt

    # PUBLIC_INTERFACE
    async def execute(self, options: QueryOptions) -> QueryResult:
        """Run the request; ``count`` ignores paging but honours every filter and join."""
        if options.row_mode():
            return await self._rows(options)
        return await self._entities(options)

    async def _entities(self, options: QueryOptions) -> QueryResult:
        filter_joins = JoinSet(self.model, self.context, self.registry)
        condition = self.where(options.filters, filter_joins)
        ids = self._scoped(select(self.model.id).select_from(self.model), filter_joins, condition).distinct()

        count_result = await self.context.session.execute(ids)
        count = len(count_result.all())

        sort_joins = JoinSet(self.model, self.context, self.registry)
        terms = self._sort_terms(options.sort_specs(), sort_joins)
        if sort_joins.fans_out:
            rows = await self._entities_by_ranked_ids(ids, sort_joins, terms, options)
            return QueryResult(rows=rows, count=count)

        stmt = sort_joins.apply(select(self.model).where(self.model.id.in_(ids.correlate(None))))
        if terms:
            stmt = stmt.order_by(*(column.desc() if descending else column.asc() for column, descending in terms))
        if options.limit is not None:
            stmt = stmt.limit(options.limit).offset(options.offset)

        result = await self.context.session.execute(stmt)
        rows = list(result.scalars().unique().all())
        return QueryResult(rows=rows, count=count)

    async def _entities_by_ranked_ids(
        self, ids: Select, joins: JoinSet, terms: List[tuple[ColumnElement, bool]], options: QueryOptions
    ) -> List[Any]:
        """
        Page entities whose sort crosses a to-many association.

        Each entity is ranked once, by the lowest joined value for ascending
        terms and the highest for descending ones, so the page window runs over
        entity ids rather than joined rows.
        """
        ranking = [func.max(column).desc() if descending else func.min(column).asc() for column, descending in terms]
        stmt = select(self.model.id).select_from(self.model).where(self.model.id.in_(ids.correlate(None)))
        stmt = joins.apply(stmt).group_by(self.model.id).order_by(*ranking, self.model.id)
        if options.limit is not None:
            stmt = stmt.limit(options.limit).offset(options.offset)
        page_ids = list((await self.context.session.execute(stmt)).scalars().all())
        if not page_ids:
            return []

        result = await self.context.session.execute(select(self.model).where(self.model.id.in_(page_ids)))
        by_id = {entity.id: entity for entity in result.scalars().unique().all()}
        return [by_id[entity_id] for entity_id in page_ids if entity_id in by_id]

    async def _rows(self, options: QueryOptions) -> QueryResult:
        joins = JoinSet(self.model, self.context, self.registry)
        if options.attributes:
            labels = self.project(options.attributes, joins)
        elif options.group_by:
            labels = {f: self._column(f, joins).label(f) for f in options.group_by}
        else:
            labels = {
                c.key: getattr(self.model, c.key).label(c.key)
                for c in inspect(self.model).mapper.column_attrs
                if not _is_private(c)
            }
        if options.with_attributes and "id" not in labels:
            if options.group_by:
                raise InvalidQuery("withAttributes cannot be combined with groupBy")
            labels["id"] = self.model.id.label("id")

        condition = self.where(options.filters, joins)
        order = self.order_by(options.sort_specs(), joins, labels)
        stmt = self._scoped(select(*labels.values()).select_from(self.model), joins, condition)
        if options.group_by:
            stmt = stmt.group_by(*self.group_by(options.group_by, joins, labels))

        count_result = await self.context.session.execute(stmt)
        count = len(count_result.all())

        if order:
            stmt = stmt.order_by(*order)
        if options.limit is not None:
            stmt = stmt.limit(options.limit).offset(options.offset)
        result = await self.context.session.execute(stmt)
        rows = [self._decode(dict(row)) for row in result.mappings().all()]

        if options.with_attributes:
            joined = await self._attribute_rows(rows)
            rows = nest_attributes(joined) if options.nest else flatten_attributes(joined)
        return QueryResult(rows=rows, count=count)

    def _decode(self, row: Dict[str, Any]) -> Dict[str, Any]:
        for label in self._decoded_labels:
            if label in row:
                row[label] = decode_attribute_value(row[label])
        return row

    async def _attribute_rows(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Left-join each row with its attribute rows, one output row per attribute."""
        ids = [row["id"] for row in rows if row.get("id") is not None]
        by_entity: Dict[Any, List[tuple[str, Any]]] = {}
        if ids:
            stmt = select(Attribute.entity_id, Attribute.key, Attribute.value).where(
                Attribute.entity_kind == self.kind, Attribute.entity_id.in_(ids)
            )
            tenant = self.context.tenant_filter(Attribute)
            if tenant is not None:
                stmt = stmt.where(tenant)
            result = await self.context.session.execute(stmt.order_by(Attribute.key))
            for entity_id, key, value in result.all():
                by_entity.setdefault(entity_id, []).append((key, value))

        joined: List[Dict[str, Any]] = []
        for row in rows:
            pairs = by_entity.get(row.get("id")) or [(None, None)]
            for key, value in pairs:
                joined.append({**row, ATTRIBUTE_KEY_COLUMN: key, ATTRIBUTE_VALUE_COLUMN: value})
        return joined


# PUBLIC_INTERFACE
def flatten_attributes(rows: Sequence[Mapping[str, Any]], id_field: str = "id") -> List[Dict[str, Any]]:
    """
    Hoist attribute join rows into ``Attributes.<key>`` entries.

    Rows sharing an id are merged into one; the raw ``Attributes.key`` and
    ``Attributes.value`` columns are removed and values are unquoted.
    """
    merged: Dict[Any, Dict[str, Any]] = {}
    order: List[Any] = []
    for row in rows:
        ident = row.get(id_field)
        if ident not in merged:
            base = {k: v for k, v in row.items() if k not in (ATTRIBUTE_KEY_COLUMN, ATTRIBUTE_VALUE_COLUMN)}
            merged[ident] = base
            order.append(ident)
        key = row.get(ATTRIBUTE_KEY_COLUMN)
        if key is not None:
            merged[ident][ATTRIBUTES_PREFIX + key] = decode_attribute_value(row.get(ATTRIBUTE_VALUE_COLUMN))
    return [merged[i] for i in order]


def nest_attributes(rows: Sequence[Mapping[str, Any]], id_field: str = "id") -> List[Dict[str, Any]]:
    """Group attribute join rows under an ``Attributes`` list of {key, value}."""
    merged: Dict[Any, Dict[str, Any]] = {}
    order: List[Any] = []
    for row in rows:
        ident = row.get(id_field)
        if ident not in merged:
            base = {k: v for k, v in row.items() if k not in (ATTRIBUTE_KEY_COLUMN, ATTRIBUTE_VALUE_COLUMN)}
            base["Attributes"] = []
            merged[ident] = base
            order.append(ident)
        key = row.get(ATTRIBUTE_KEY_COLUMN)
        if key is not None:
            merged[ident]["Attributes"].append(
                {"key": key, "value": decode_attribute_value(row.get(ATTRIBUTE_VALUE_COLUMN))}
            )
    return [merged[i] for i in order]
