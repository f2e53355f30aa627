import pytest

from rowbind.persistence import IdentityMap


@pytest.mark.asyncio
async def test_identity_map_tracks_stored_entities(kitchen):
    session = kitchen.db.session()
    fish = session.add(kitchen.IngredientType(name="fish"))
    await session.commit()

    identity_map = IdentityMap()
    identity_map.add(fish)
    assert fish in identity_map
    assert identity_map.get(kitchen.IngredientType, fish.id) is fish
    assert identity_map.lookup(kitchen.IngredientType, "name", "fish") is fish
    assert identity_map.lookup(kitchen.IngredientType, "name", None) is None
    assert identity_map.get(kitchen.Ingredient, fish.id) is None

    snapshot = identity_map.snapshot()
    identity_map.clear()
    assert len(identity_map) == 0
    identity_map.restore(snapshot)
    assert list(identity_map) == [fish]
    await session.close()


def test_identity_map_ignores_entities_without_keys(unprovisioned_kitchen):
    identity_map = IdentityMap()
    fish = unprovisioned_kitchen.IngredientType(name="fish")
    identity_map.add(fish)
    assert len(identity_map) == 0
    assert fish not in identity_map


@pytest.mark.asyncio
async def test_remove_only_drops_the_same_instance(kitchen):
    session = kitchen.db.session()
    fish = session.add(kitchen.IngredientType(name="fish"))
    await session.commit()

    reader = kitchen.db.session()
    copy = await reader.get(kitchen.IngredientType, fish.id)
    identity_map = IdentityMap()
    identity_map.add(fish)
    identity_map.remove(copy)
    assert identity_map.get(kitchen.IngredientType, fish.id) is fish
    identity_map.remove(fish)
    assert identity_map.get(kitchen.IngredientType, fish.id) is None
    await reader.close()
    await session.close()
