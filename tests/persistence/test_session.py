import logging
import uuid
from datetime import datetime

import pytest

from rowbind import (
    Attribute,
    Database,
    ManyRelation,
    Model,
    ModelStateError,
    NativeQueryError,
    OneRelation,
    ParameterError,
    RelationalAttributeError,
    RelationshipCycleError,
)
from rowbind.adapters import SQLiteAdapter


async def count(session, table):
    result = await session.execute(f'SELECT COUNT(*) AS total FROM "{table}"')
    return result.rows[0]["total"]


class NativeUUIDAdapter(SQLiteAdapter):
    """
    Hands uuid columns back as uuid.UUID, as psycopg does.
    """

    async def execute(self, sql, params=None):
        result = await super().execute(sql, params)
        for row in result.rows:
            for column in ("id", "recipe_id"):
                value = row.get(column)
                if isinstance(value, str) and len(value) == 36:
                    row[column] = uuid.UUID(value)
        return result


@pytest.mark.asyncio
async def test_uuid_keys_map_to_one_entity_in_any_form(kitchen):
    database = kitchen.db
    session = database.session(lambda: NativeUUIDAdapter(database.config))
    key = uuid.uuid4()
    recipe = kitchen.Recipe(id=key.hex, title="soup")
    assert recipe.id == str(key)
    leek = kitchen.Ingredient(name="leek")
    item = kitchen.IngredientItem(position=1, recipe=recipe, ingredient=leek)
    session.add(item)
    await session.commit()

    assert await session.query(kitchen.Recipe).first() is recipe
    assert await session.get(kitchen.Recipe, key) is recipe
    assert await session.get(kitchen.Recipe, key.hex.upper()) is recipe
    assert await session.query(kitchen.Recipe).where({"id": key}).first() is recipe
    await session.close()

    fresh = database.session(lambda: NativeUUIDAdapter(database.config))
    loaded = await fresh.get(kitchen.Recipe, key.hex)
    assert loaded.id == str(key)
    items = await loaded.items.load()
    assert [entry.position for entry in items] == [1]
    assert items[0].recipe_id == str(key)
    assert await items[0].recipe.load() is loaded
    await fresh.close()


@pytest.mark.asyncio
async def test_commit_creates_referenced_entities_first(kitchen):
    session = kitchen.db.session()
    fish = kitchen.IngredientType(name="fish")
    trout = kitchen.Ingredient(name="trout", type=fish)

    assert session.add(trout) is trout
    assert session.unit_of_work.is_scheduled_for_creation(fish)
    await session.commit()

    assert fish.id is not None
    assert trout.id is not None
    assert trout.type_id == fish.id
    assert fish.bound and trout.bound
    assert not fish._relational.intended_by
    assert await session.get(kitchen.Ingredient, trout.id) is trout
    assert not session.unit_of_work.creations
    await session.close()


@pytest.mark.asyncio
async def test_add_requires_entities(kitchen):
    session = kitchen.db.session()
    with pytest.raises(ParameterError):
        session.add()
    with pytest.raises(ParameterError):
        session.add("fish")
    await session.close()


@pytest.mark.asyncio
async def test_entities_from_another_database_are_rejected(kitchen):
    class Stray(Model):
        id = Attribute("integer", pk=True)

    Database("stray", config="sqlite:///:memory:", models=[Stray])
    session = kitchen.db.session()
    with pytest.raises(ModelStateError):
        session.add(Stray())
    with pytest.raises(ModelStateError):
        session.query(Stray)
    await session.close()


@pytest.mark.asyncio
async def test_commit_logs_summary(kitchen, caplog):
    caplog.set_level(logging.INFO, logger="rowbind.persistence.session")
    session = kitchen.db.session()
    session.add(kitchen.IngredientType(name="fish"), kitchen.IngredientType(name="fruit"))
    await session.commit()
    assert any(
        "Committed 2 creation(s), 0 deletion(s), 0 update(s)" in record.message for record in caplog.records
    )
    await session.close()


@pytest.mark.asyncio
async def test_cycles_between_ephemeral_entities_are_rejected():
    class Node(Model):
        id = Attribute("integer", pk=True)
        parent_id = Attribute("integer", fk="node.id", nullable=True)
        parent = OneRelation("node")
        children = ManyRelation("node")

    database = Database("nodes", config="sqlite:///:memory:", models=[Node])
    session = database.session()
    first = Node()
    second = Node(parent=first)
    first.parent.set(second)

    with pytest.raises(RelationshipCycleError):
        session.add(first)
    assert not session.unit_of_work.creations
    assert first.session is None
    await session.close()


@pytest.mark.asyncio
async def test_failed_commit_restores_memory_state(kitchen):
    session = kitchen.db.session()
    fish = kitchen.IngredientType(name="fish")
    trout = kitchen.Ingredient(name="trout", type=fish)
    item = kitchen.IngredientItem(position=1, ingredient=trout)
    session.add(item)

    with pytest.raises(RelationalAttributeError):
        await session.commit()

    assert fish.id is None
    assert not fish.bound
    assert trout.type_id is None
    assert trout.type.get() is fish
    assert session.unit_of_work.is_scheduled_for_creation(fish)
    assert len(session.identity_map) == 0
    assert await count(session, "ingredient_types") == 0

    item.recipe = kitchen.Recipe(title="soup")
    await session.commit()
    assert await count(session, "ingredient_items") == 1
    assert item.recipe_id == str(uuid.UUID(item.recipe_id))
    assert item.ingredient_id == trout.id
    await session.close()


@pytest.mark.asyncio
async def test_dirty_updates_are_flushed(kitchen):
    session = kitchen.db.session()
    trout = session.add(kitchen.Ingredient(name="trout"))
    await session.commit()
    assert not trout.is_dirty()

    trout.name = "salmon"
    assert trout.dirty == {"name": "trout"}
    await session.commit()
    assert not trout.is_dirty()

    reader = kitchen.db.session()
    stored = await reader.get(kitchen.Ingredient, trout.id)
    assert stored.name == "salmon"
    await reader.close()
    await session.close()


@pytest.mark.asyncio
async def test_primary_key_changes_rekey_identity_map(kitchen):
    session = kitchen.db.session()
    fruit = session.add(kitchen.IngredientType(name="fruit"))
    await session.commit()

    old_id = fruit.id
    fruit.id = old_id + 100
    await session.commit()
    assert await session.get(kitchen.IngredientType, old_id + 100) is fruit
    assert session.identity_map.get(kitchen.IngredientType, old_id) is None
    await session.close()


@pytest.mark.asyncio
async def test_refresh_keeps_dirty_values(kitchen):
    session = kitchen.db.session()
    trout = session.add(kitchen.Ingredient(name="trout"))
    await session.commit()

    trout.name = "salmon"
    again = await session.query(kitchen.Ingredient).where({"id": trout.id}).first()
    assert again is trout
    assert trout.name == "salmon"
    assert trout.dirty == {"name": "trout"}
    await session.close()


@pytest.mark.asyncio
async def test_refresh_applies_store_changes(kitchen):
    session = kitchen.db.session()
    trout = session.add(kitchen.Ingredient(name="trout"))
    await session.commit()

    await session.execute('UPDATE "ingredients" SET "name" = ?', ["char"])
    assert trout.name == "trout"
    await session.query(kitchen.Ingredient).all()
    assert trout.name == "char"
    assert not trout.is_dirty()
    await session.close()


@pytest.mark.asyncio
async def test_delete_requires_loaded_dependents(kitchen):
    session = kitchen.db.session()
    fish = kitchen.IngredientType(name="fish")
    session.add(kitchen.Ingredient(name="trout", type=fish))
    await session.commit()

    reader = kitchen.db.session()
    stored_fish = await reader.get(kitchen.IngredientType, fish.id)
    with pytest.raises(ModelStateError):
        await reader.delete(stored_fish)
    assert stored_fish.writable
    assert not reader.is_scheduled_for_deletion(stored_fish)
    await reader.close()
    await session.close()


@pytest.mark.asyncio
async def test_delete_clears_foreign_keys_of_loaded_dependents(kitchen):
    session = kitchen.db.session()
    fish = kitchen.IngredientType(name="fish")
    trout = kitchen.Ingredient(name="trout", type=fish)
    session.add(trout)
    await session.commit()

    await fish.ingredients.load()
    await session.delete(fish)
    assert trout.type_id is None
    assert trout.type.get() is None
    assert not fish.writable
    with pytest.raises(ModelStateError):
        fish.name = "gone"

    await session.commit()
    assert not fish.bound
    assert fish.session is None
    assert await count(session, "ingredient_types") == 0
    stored = await session.query(kitchen.Ingredient).returning("type_id").all()
    assert stored == [{"type_id": None}]
    await session.close()


@pytest.mark.asyncio
async def test_delete_without_dependents_loads_and_proceeds(kitchen):
    session = kitchen.db.session()
    fruit = session.add(kitchen.IngredientType(name="fruit"))
    await session.commit()

    reader = kitchen.db.session()
    stored = await reader.get(kitchen.IngredientType, fruit.id)
    await reader.delete(stored)
    assert await reader.query(kitchen.IngredientType).all() == []
    await reader.commit()
    assert await count(reader, "ingredient_types") == 0
    await reader.close()
    await session.close()


@pytest.mark.asyncio
async def test_add_after_delete_unlocks(kitchen):
    session = kitchen.db.session()
    fruit = session.add(kitchen.IngredientType(name="fruit"))
    await session.commit()

    await session.delete(fruit)
    assert not fruit.writable
    session.add(fruit)
    assert fruit.writable
    assert not session.is_scheduled_for_deletion(fruit)
    await session.commit()
    assert await count(session, "ingredient_types") == 1
    await session.close()


@pytest.mark.asyncio
async def test_deleting_ephemeral_entity_cancels_creation(kitchen):
    session = kitchen.db.session()
    fish = kitchen.IngredientType(name="fish")
    trout = kitchen.Ingredient(name="trout", type=fish)
    session.add(trout)

    await session.delete(fish)
    assert not session.unit_of_work.is_scheduled_for_creation(fish)
    assert trout.type.get() is None
    assert fish.session is None

    await session.commit()
    assert await count(session, "ingredient_types") == 0
    assert trout.type_id is None
    await session.close()


@pytest.mark.asyncio
async def test_deleting_required_parent_fails_commit(kitchen):
    session = kitchen.db.session()
    recipe = kitchen.Recipe(title="soup")
    item = kitchen.IngredientItem(position=1, recipe=recipe, ingredient=kitchen.Ingredient(name="leek"))
    session.add(item)
    await session.commit()

    await recipe.items.load()
    await session.delete(recipe)
    with pytest.raises(RelationalAttributeError):
        await session.commit()
    assert recipe.bound
    assert session.is_scheduled_for_deletion(recipe)
    assert item.recipe_id is None
    assert await count(session, "recipes") == 1
    await session.close()


@pytest.mark.asyncio
async def test_native_errors_are_wrapped(kitchen):
    session = kitchen.db.session()
    with pytest.raises(NativeQueryError) as excinfo:
        await session.execute("SELECT * FROM nowhere WHERE id = ?", [1])
    assert excinfo.value.sql == "SELECT * FROM nowhere WHERE id = ?"
    assert excinfo.value.params == [1]
    await session.close()


@pytest.mark.asyncio
async def test_datetimes_round_trip(kitchen):
    moment = datetime(2024, 3, 4, 5, 6, 7)
    session = kitchen.db.session()
    recipe = session.add(kitchen.Recipe(title="soup", created_at=moment))
    await session.commit()

    reader = kitchen.db.session()
    stored = await reader.get(kitchen.Recipe, recipe.id)
    assert stored.created_at == moment
    assert stored.serialize()["created_at"] == "2024-03-04T05:06:07"
    await reader.close()
    await session.close()


@pytest.mark.asyncio
async def test_serialize_needs_loaded_relations(kitchen):
    session = kitchen.db.session()
    fish = kitchen.IngredientType(name="fish")
    session.add(kitchen.Ingredient(name="trout", type=fish))
    await session.commit()

    reader = kitchen.db.session()
    stored = await reader.get(kitchen.IngredientType, fish.id)
    with pytest.raises(ModelStateError):
        stored.serialize(include=["ingredients"])
    payload = await stored.serialize_async(include=[("ingredients", {"include": ["type"]})])
    assert payload["ingredients"][0]["name"] == "trout"
    assert payload["ingredients"][0]["type"]["name"] == "fish"
    await reader.close()
    await session.close()


@pytest.mark.asyncio
async def test_session_context_manager_commits_and_closes(kitchen):
    async with kitchen.db.session() as session:
        session.add(kitchen.IngredientType(name="fish"))
    assert session.closed
    with pytest.raises(ModelStateError):
        await session.execute("SELECT 1")

    async with kitchen.db.session() as reader:
        assert [entity.name for entity in await reader.query(kitchen.IngredientType).all()] == ["fish"]


@pytest.mark.asyncio
async def test_session_context_manager_skips_commit_on_error(kitchen):
    with pytest.raises(RuntimeError):
        async with kitchen.db.session() as session:
            session.add(kitchen.IngredientType(name="fish"))
            raise RuntimeError("abort")

    async with kitchen.db.session() as reader:
        assert await reader.query(kitchen.IngredientType).all() == []


@pytest.mark.asyncio
async def test_store_hooks_run_around_writes(kitchen):
    calls = []

    tag = kitchen.IngredientType(name="herb")
    tag.model_will_store = lambda: calls.append("will")
    tag.model_did_store = lambda: calls.append("did")
    session = kitchen.db.session()
    session.add(tag)
    await session.commit()
    assert calls == ["will", "did"]
    await session.close()
