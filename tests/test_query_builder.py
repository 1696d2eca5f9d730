"""
Tests for declarative query translation: filters, joins, projections,
ordering, grouping, paging and sparse attributes.
"""

import pytest

from lifecycle_api.core.errors import InvalidQuery, UnresolvedSortPath
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.db.models import Grant, Plan, User
from lifecycle_api.repositories.query import (
    Aggregate,
    Aliased,
    Field,
    Literal,
    QueryBuilder,
    Raw,
    flatten_attributes,
    nest_attributes,
    parse_attribute,
)
from lifecycle_api.schemas.query import QueryOptions, SortSpec


@pytest.fixture
def grants(session, world):
    """Run a Grant query for org A."""
    context = TenantContext(session, tenant_id=world.org_a)

    async def run(allow_raw=False, **options):
        return await QueryBuilder(Grant, context, allow_raw=allow_raw).execute(QueryOptions(**options))

    return run


def ids_of(result):
    return {row.id for row in result.rows}


# -- expression grammar -------------------------------------------------------

def test_parse_plain_and_dotted_fields():
    assert parse_attribute("status") == Field("status")
    assert parse_attribute("Plan.name") == Field("Plan.name")
    assert parse_attribute("Attributes.region") == Field("Attributes.region")


def test_parse_aliases():
    assert parse_attribute(["status", "state"]) == Aliased(Field("status"), "state")
    assert parse_attribute("Plan.name as plan_name") == Aliased(Field("Plan.name"), "plan_name")
    assert parse_attribute({"field": "status", "as": "state"}) == Aliased(Field("status"), "state")


def test_parse_aggregates():
    assert parse_attribute("sum(granted) as total") == Aggregate("sum", "granted", "total")
    assert parse_attribute("COUNT(*)") == Aggregate("count", "*", "count")
    assert parse_attribute("count(distinct user_id) as users") == Aggregate("count", "user_id", "users", distinct=True)
    assert parse_attribute("distinct(status)") == Aggregate("distinct", "status", "status")
    assert parse_attribute({"fn": "max", "column": "granted", "as": "top"}) == Aggregate("max", "granted", "top")


def test_parse_literal_and_raw():
    assert parse_attribute({"literal": 1, "as": "one"}) == Literal(1, "one")
    assert parse_attribute("case when granted > 1 then 'a' else 'b' end as bucket") == Raw(
        "case when granted > 1 then 'a' else 'b' end", "bucket"
    )
    assert parse_attribute({"raw": "1 + 1", "as": "two"}) == Raw("1 + 1", "two")


@pytest.mark.parametrize("spec", ["", "sum(granted", "status; drop table grants", ["a"], 42, {"unknown": 1}])
def test_parse_rejects_garbage(spec):
    with pytest.raises(InvalidQuery):
        parse_attribute(spec)


# -- filters ------------------------------------------------------------------

async def test_equality_and_membership(grants, world):
    assert ids_of(await grants(filters={"status": "draft"})) == {world.draft}
    assert ids_of(await grants(filters={"status": ["draft", "approved"]})) == {world.draft, world.approved}


async def test_or_group_is_a_union(grants, world):
    result = await grants(filters={"or": [{"status": "draft"}, {"status": "rejected"}]})
    assert ids_of(result) == {world.draft, world.rejected}
    assert result.count == 2


async def test_nested_groups(grants, world):
    result = await grants(
        filters={
            "or": [
                {"and": [{"status": "approved"}, {"Attributes.region": "US"}]},
                {"granted": {"lt": 100}},
            ]
        }
    )
    assert ids_of(result) == {world.approved, world.rejected}


async def test_empty_or_matches_nothing(grants):
    result = await grants(filters={"or": []})
    assert result.count == 0
    assert result.rows == []


async def test_comparison_operators(grants, world):
    assert ids_of(await grants(filters={"granted": {"gte": 200}})) == {world.draft, world.approved}
    assert ids_of(await grants(filters={"granted": {"between": [100, 250]}})) == {world.approved}
    assert ids_of(await grants(filters={"status": {"ne": "approved"}})) == {world.draft, world.rejected}
    assert ids_of(await grants(filters={"status": {"notIn": ["draft", "rejected"]}})) == {world.approved}
    assert ids_of(await grants(filters={"granted": {"gt": 40, "lt": 250}})) == {world.approved, world.rejected}


async def test_like_through_association(grants, world):
    assert ids_of(await grants(filters={"Plan.name": {"like": "lph"}})) == {world.approved, world.rejected}
    assert ids_of(await grants(filters={"Plan.name": {"notLike": "lph"}})) == {world.draft}
    assert ids_of(await grants(filters={"Plan.name": {"iLike": "BET"}})) == {world.draft}


async def test_null_filters(grants, world):
    assert ids_of(await grants(filters={"comments": None})) == {world.draft, world.approved, world.rejected}
    assert ids_of(await grants(filters={"comments": {"ne": None}})) == set()


async def test_attribute_filters(grants, world):
    assert ids_of(await grants(filters={"Attributes.region": "EU"})) == {world.draft}
    assert ids_of(await grants(filters={"Attributes.score": {"gt": 5}})) == {world.approved}
    assert ids_of(await grants(filters={"Attributes.region": ["EU", "US"]})) == {world.draft, world.approved}
    assert ids_of(await grants(filters={"Attributes.region": None})) == {world.rejected}


async def test_id_strings_are_coerced(grants, world):
    assert ids_of(await grants(filters={"id": str(world.draft)})) == {world.draft}


async def test_invalid_filters(grants):
    with pytest.raises(InvalidQuery):
        await grants(filters={"nope": 1})
    with pytest.raises(InvalidQuery):
        await grants(filters={"status": {"approx": "draft"}})
    with pytest.raises(InvalidQuery):
        await grants(filters={"status": {"in": "draft"}})
    with pytest.raises(InvalidQuery):
        await grants(filters={"or": {"status": "draft"}})


async def test_count_ignores_one_to_many_fan_out(grants, world):
    """A draft with two scheduled tranches is counted once."""
    result = await grants(filters={"Vest.status": "scheduled"})
    assert result.count == 1
    assert [row.id for row in result.rows] == [world.draft]


# -- ordering and paging ------------------------------------------------------

async def test_sort_through_association(grants, world):
    result = await grants(sort=[SortSpec(field="Plan.name"), SortSpec(field="granted", order="DESC")])
    assert [row.id for row in result.rows] == [world.approved, world.rejected, world.draft]

    result = await grants(sortBy="Plan.name", sortOrder="desc")
    assert result.rows[0].id == world.draft


async def test_unresolvable_sort_path(grants):
    with pytest.raises(UnresolvedSortPath) as exc_info:
        await grants(sortBy="Bogus.name")
    assert exc_info.value.path == "Bogus.name"
    with pytest.raises(InvalidQuery):
        await grants(sortBy="bogus")


async def test_paging_counts_every_match(grants, world):
    result = await grants(sortBy="granted", limit=1, page=2)
    assert result.count == 3
    assert [row.id for row in result.rows] == [world.approved]


async def test_paging_when_sorting_through_a_to_many_association(session, world):
    """Each plan fills one page slot even though it joins several grants."""
    builder = QueryBuilder(Plan, TenantContext(session, tenant_id=world.org_a))
    pages = [await builder.execute(QueryOptions(sortBy="Grant.granted", limit=1, page=page)) for page in (1, 2, 3)]
    assert [[plan.name for plan in result.rows] for result in pages] == [["Alpha"], ["Beta"], []]
    assert [result.count for result in pages] == [2, 2, 2]

    # Ascending ranks a plan by its smallest grant, descending by its largest.
    result = await builder.execute(QueryOptions(sortBy="Grant.granted", sortOrder="DESC"))
    assert [plan.name for plan in result.rows] == ["Beta", "Alpha"]

    result = await builder.execute(
        QueryOptions(filters={"status": "active"}, sortBy="Grant.granted", sortOrder="DESC", limit=1, page=2)
    )
    assert [plan.name for plan in result.rows] == ["Alpha"]
    assert result.count == 2


# -- projection and grouping --------------------------------------------------

async def test_grouped_aggregates(grants):
    result = await grants(
        attributes=["status", "count(id) as n", "sum(granted) as total"],
        groupBy=["status"],
        sortBy="status",
    )
    assert result.rows == [
        {"status": "approved", "n": 1, "total": 200.0},
        {"status": "draft", "n": 1, "total": 300.0},
        {"status": "rejected", "n": 1, "total": 50.0},
    ]
    assert result.count == 3


async def test_distinct_count(grants):
    result = await grants(attributes=["count(distinct user_id) as users"])
    assert result.rows == [{"users": 2}]


async def test_projection_through_association_sorted_by_alias(grants, world):
    result = await grants(attributes=["id", ["Plan.name", "plan_name"]], sortBy="plan_name", sortOrder="DESC")
    assert result.rows[0] == {"id": world.draft, "plan_name": "Beta"}


async def test_attribute_projection_is_decoded(grants):
    result = await grants(attributes=["Attributes.region as region", "Attributes.score"], filters={"status": "draft"})
    assert result.rows == [{"region": "EU", "Attributes.score": 3}]


async def test_raw_expressions_require_opt_in(grants):
    bucket = "case when granted > 100 then 'big' else 'small' end as size"
    with pytest.raises(InvalidQuery):
        await grants(attributes=["id", bucket])

    result = await grants(allow_raw=True, attributes=["status", bucket], sortBy="status")
    assert [row["size"] for row in result.rows] == ["big", "big", "small"]


async def test_with_attributes_flattened(grants, world):
    result = await grants(attributes=["id", "status"], filters={"status": "draft"}, withAttributes=True, nest=False)
    assert result.rows == [
        {"id": world.draft, "status": "draft", "Attributes.region": "EU", "Attributes.score": 3}
    ]


async def test_with_attributes_nested(grants, world):
    result = await grants(
        attributes=["id", "status"], filters={"status": ["draft", "rejected"]}, withAttributes=True, sortBy="status"
    )
    assert result.rows == [
        {
            "id": world.draft,
            "status": "draft",
            "Attributes": [{"key": "region", "value": "EU"}, {"key": "score", "value": 3}],
        },
        {"id": world.rejected, "status": "rejected", "Attributes": []},
    ]


async def test_private_columns_are_hidden(session, world):
    context = TenantContext(session, tenant_id=world.org_a)
    result = await QueryBuilder(User, context).execute(QueryOptions(raw=True, sortBy="email"))
    assert result.count == 3
    assert all("hashed_password" not in row for row in result.rows)
    with pytest.raises(InvalidQuery):
        await QueryBuilder(User, context).execute(QueryOptions(attributes=["hashed_password"]))
    with pytest.raises(InvalidQuery):
        await QueryBuilder(User, context).execute(QueryOptions(filters={"hashed_password": None}))


# -- attribute row reshaping --------------------------------------------------

def test_flatten_attributes_merges_rows():
    rows = [
        {"id": 1, "name": "a", "Attributes.key": "color", "Attributes.value": '"red"'},
        {"id": 1, "name": "a", "Attributes.key": "size", "Attributes.value": "4"},
        {"id": 2, "name": "b", "Attributes.key": None, "Attributes.value": None},
    ]
    assert flatten_attributes(rows) == [
        {"id": 1, "name": "a", "Attributes.color": "red", "Attributes.size": 4},
        {"id": 2, "name": "b"},
    ]


def test_nest_attributes_groups_rows():
    rows = [
        {"id": 1, "Attributes.key": "color", "Attributes.value": '"red"'},
        {"id": 2, "Attributes.key": None, "Attributes.value": None},
    ]
    assert nest_attributes(rows) == [
        {"id": 1, "Attributes": [{"key": "color", "value": "red"}]},
        {"id": 2, "Attributes": []},
    ]
