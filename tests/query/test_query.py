import uuid

import pytest

from rowbind import AttributeTypeError, ParameterError, QueryError, SchemaError
from rowbind.dialects import PostgresDialect
from rowbind.query import PLACEHOLDER, flatten_tokens, render_tokens


def make_query(kitchen, model=None):
    return kitchen.db.session().query(model or kitchen.Ingredient)


def test_select_all_columns(unprovisioned_kitchen):
    sql, params = make_query(unprovisioned_kitchen).to_sql()
    assert sql == 'SELECT "id", "name", "type_id" FROM "ingredients"'
    assert params == []


def test_where_groups_and_conjunctives(unprovisioned_kitchen):
    query = make_query(unprovisioned_kitchen).where({"name": "trout"}).or_().where({"id": [">", 3]})
    sql, params = query.to_sql()
    assert sql == 'SELECT "id", "name", "type_id" FROM "ingredients" WHERE ("name" = ?) OR ("id" > ?)'
    assert params == ["trout", 3]


def test_conditions_in_one_group_share_the_conjunctive(unprovisioned_kitchen):
    sql, params = make_query(unprovisioned_kitchen).where({"name": "trout", "type_id": None}).to_sql()
    assert sql.endswith('WHERE ("name" = ? AND "type_id" IS NULL)')
    assert params == ["trout"]

    sql, _ = make_query(unprovisioned_kitchen).where({"name": "a", "id": 1}, "or").to_sql()
    assert sql.endswith('WHERE ("name" = ? OR "id" = ?)')


def test_null_comparisons(unprovisioned_kitchen):
    sql, params = make_query(unprovisioned_kitchen).where({"type_id": ["!=", None]}).to_sql()
    assert sql.endswith('WHERE ("type_id" IS NOT NULL)')
    assert params == []
    with pytest.raises(QueryError):
        make_query(unprovisioned_kitchen).where({"type_id": ["<", None]})


def test_in_and_like(unprovisioned_kitchen):
    sql, params = make_query(unprovisioned_kitchen).where({"id": ["in", [1, 2]]}).to_sql()
    assert sql.endswith('WHERE ("id" IN (?, ?))')
    assert params == [1, 2]
    sql, params = make_query(unprovisioned_kitchen).where({"name": ["ilike", "tr%"]}).to_sql()
    assert sql.endswith('WHERE ("name" LIKE ?)')
    assert params == ["tr%"]
    with pytest.raises(QueryError):
        make_query(unprovisioned_kitchen).where({"id": ["in", []]})
    with pytest.raises(QueryError):
        make_query(unprovisioned_kitchen).where({"name": ["like", 5]})


def test_order_and_limit(unprovisioned_kitchen):
    query = make_query(unprovisioned_kitchen).order([{"name": "asc"}, {"id": "desc"}]).limit(2)
    sql, _ = query.to_sql()
    assert sql.endswith('ORDER BY "name" ASC, "id" DESC LIMIT 2')
    with pytest.raises(QueryError):
        query.order({"name": "desc"})
    with pytest.raises(QueryError):
        query.limit(3)
    sql, _ = query.order(None).limit(None).to_sql()
    assert sql == 'SELECT "id", "name", "type_id" FROM "ingredients"'


def test_returning_projects_columns(unprovisioned_kitchen):
    sql, _ = make_query(unprovisioned_kitchen).returning("name").to_sql()
    assert sql == 'SELECT "name" FROM "ingredients"'
    with pytest.raises(SchemaError):
        make_query(unprovisioned_kitchen).returning("colour")


def test_queries_are_immutable(unprovisioned_kitchen):
    base = make_query(unprovisioned_kitchen)
    filtered = base.where({"name": "trout"})
    assert base.to_sql()[1] == []
    assert filtered.to_sql()[1] == ["trout"]


def test_invalid_conditions(unprovisioned_kitchen):
    query = make_query(unprovisioned_kitchen)
    with pytest.raises(QueryError):
        query.where({})
    with pytest.raises(QueryError):
        query.where({"name": ["~", "x"]})
    with pytest.raises(QueryError):
        query.where({"name": "x"}, "xor")
    with pytest.raises(QueryError):
        query.or_()
    with pytest.raises(QueryError):
        query.order({"name": "sideways"})
    with pytest.raises(QueryError):
        query.limit(-1)
    with pytest.raises(SchemaError):
        query.where({"colour": "red"})
    with pytest.raises(AttributeTypeError):
        query.where({"id": "one"})


def test_query_by_collection_name(unprovisioned_kitchen):
    session = unprovisioned_kitchen.db.session()
    assert session.query("ingredient_types").model is unprovisioned_kitchen.IngredientType
    assert session.query("IngredientType").model is unprovisioned_kitchen.IngredientType


def test_render_tokens_with_postgres_placeholders():
    tokens = ["SELECT", "*", "FROM", '"t"', None, ["WHERE", ["(", ['"a"', "=", PLACEHOLDER], ")"]], ""]
    assert flatten_tokens(tokens)[-1] == ")"
    assert render_tokens(tokens, PostgresDialect()) == 'SELECT * FROM "t" WHERE ("a" = %s)'


@pytest.mark.asyncio
async def test_insert_update_delete_round_trip(kitchen):
    session = kitchen.db.session()
    [fruit] = await session.query(kitchen.IngredientType).insert({"name": "fruit"})
    assert fruit.bound
    assert fruit.id is not None
    assert await session.get(kitchen.IngredientType, fruit.id) is fruit

    [apple] = await session.query(kitchen.Ingredient).insert({"name": "apple", "type_id": fruit.id})
    await fruit.ingredients.load()
    assert fruit.ingredients.get() == [apple]

    updated = await session.query(kitchen.Ingredient).where({"name": "apple"}).update({"name": "pear"})
    assert updated == [apple]
    assert apple.name == "pear"
    assert not apple.is_dirty()

    deleted = await session.query(kitchen.Ingredient).where({"name": "pear"}).delete()
    assert deleted == [apple]
    assert not apple.bound
    assert fruit.ingredients.get() == []
    assert await session.query(kitchen.Ingredient).all() == []
    await session.close()


@pytest.mark.asyncio
async def test_delete_without_notify_keeps_entities_mapped(kitchen):
    session = kitchen.db.session()
    [fruit] = await session.query(kitchen.IngredientType).insert({"name": "fruit"})
    rows = await session.query(kitchen.IngredientType).returning("name").delete(notify=False)
    assert rows == [{"name": "fruit"}]
    assert fruit.bound
    await session.close()


@pytest.mark.asyncio
async def test_query_method_argument_errors(kitchen):
    session = kitchen.db.session()
    query = session.query(kitchen.IngredientType)
    with pytest.raises(ParameterError):
        await query.first(0)
    with pytest.raises(QueryError):
        await query.where({"name": "x"}).insert({"name": "y"})
    with pytest.raises(QueryError):
        await query.limit(1).update({"name": "y"})
    with pytest.raises(QueryError):
        await query.update({})
    with pytest.raises(QueryError):
        await query.insert({"colour": "red"})
    await session.close()


@pytest.mark.asyncio
async def test_first_and_returning(kitchen):
    session = kitchen.db.session()
    session.add(kitchen.IngredientType(name="fish"), kitchen.IngredientType(name="fruit"))
    await session.commit()

    query = session.query(kitchen.IngredientType).order({"name": "desc"})
    assert (await query.first()).name == "fruit"
    assert [entity.name for entity in await query.first(2)] == ["fruit", "fish"]
    assert await query.where({"name": ["!=", "fish"]}).where({"name": ["!=", "fruit"]}).all() == []
    assert await query.returning("name").all() == [{"name": "fruit"}, {"name": "fish"}]
    assert await session.query(kitchen.IngredientType).where({"name": "none"}).first() is None
    await session.close()


def test_uuid_conditions_bind_dashed_text(unprovisioned_kitchen):
    key = uuid.uuid4()
    query = make_query(unprovisioned_kitchen, unprovisioned_kitchen.Recipe)
    _, params = query.where({"id": key}).to_sql()
    assert params == [str(key)]
    _, params = query.where({"id": ["in", [key.hex, str(key).upper()]]}).to_sql()
    assert params == [str(key), str(key)]
