import sqlite3
from contextlib import closing
from types import SimpleNamespace

import pytest

from rowbind import Attribute, Database, ManyRelation, Model, OneRelation
from rowbind.dialects import SQLiteDialect
from rowbind.schema import SchemaBuilder


def build_kitchen(dsn: str) -> SimpleNamespace:
    """
    Fresh model classes registered on a fresh database.
    """

    class IngredientType(Model):
        class Meta:
            collection = "ingredient_types"

        id = Attribute("integer", pk=True)
        name = Attribute("string", length=50)
        ingredients = ManyRelation("ingredients", order={"name": "asc"})

    class Ingredient(Model):
        class Meta:
            collection = "ingredients"

        id = Attribute("integer", pk=True)
        name = Attribute("string", length=50)
        type_id = Attribute("integer", fk="ingredient_types.id", nullable=True)
        type = OneRelation("ingredient_types")
        items = ManyRelation("ingredient_items")

    class Recipe(Model):
        class Meta:
            collection = "recipes"

        id = Attribute("uuid", pk=True)
        title = Attribute("string")
        created_at = Attribute("datetime", nullable=True)
        items = ManyRelation("ingredient_items", order=[{"position": "asc"}])

    class IngredientItem(Model):
        class Meta:
            collection = "ingredient_items"

        id = Attribute("integer", pk=True)
        position = Attribute("integer")
        recipe_id = Attribute("uuid", fk="recipes.id")
        ingredient_id = Attribute("integer", fk="ingredients.id")
        recipe = OneRelation("recipes")
        ingredient = OneRelation("ingredients")

    database = Database(
        "kitchen",
        config=dsn,
        models=[IngredientType, Ingredient, Recipe, IngredientItem],
    )
    return SimpleNamespace(
        db=database,
        IngredientType=IngredientType,
        Ingredient=Ingredient,
        Recipe=Recipe,
        IngredientItem=IngredientItem,
    )


def _provision(database: Database, path) -> None:
    with closing(sqlite3.connect(path)) as connection:
        for statement in SchemaBuilder(SQLiteDialect()).create_all_sql(database):
            connection.execute(statement)
        connection.commit()


@pytest.fixture
def kitchen(tmp_path):
    path = tmp_path / "kitchen.db"
    namespace = build_kitchen(f"sqlite:///{path}")
    _provision(namespace.db, path)
    return namespace


@pytest.fixture
def unprovisioned_kitchen():
    return build_kitchen("sqlite:///:memory:")
