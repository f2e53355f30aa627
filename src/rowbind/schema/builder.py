"""
Schema builder converting registered model schemas into DDL statements.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Type

from ..core.model import Model
from ..dialects.base import Dialect
from ..utils import get_logger, split_reference

if TYPE_CHECKING:
    from ..core.attributes import AttributeIdentity
    from ..core.database import Database
    from ..persistence.session import Session


class SchemaBuilder:
    """
    Produces dialect-specific SQL for provisioning tables.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.logger = get_logger("schema.builder")

    def create_table_sql(self, model: Type[Model]) -> str:
        schema = model._require_schema()
        pieces = self._render_columns(model)
        pieces.extend(self._render_foreign_keys(model))
        table_name = self.dialect.format_table(schema.collection)
        return f"CREATE TABLE IF NOT EXISTS {table_name} ({', '.join(pieces)})"

    def create_all_sql(self, database: "Database") -> List[str]:
        """
        CREATE TABLE statements for every model of ``database``, referenced
        collections first.
        """
        return [self.create_table_sql(model) for model in self.dependency_order(database)]

    async def create_all(self, session: "Session") -> None:
        for statement in self.create_all_sql(session.database):
            await session.execute(statement)

    def drop_table_sql(self, model: Type[Model]) -> str:
        table_name = self.dialect.format_table(model._require_schema().collection)
        self.logger.warning(
            "DROP TABLE generated for %s; confirm destructive change before applying.",
            table_name,
        )
        return f"DROP TABLE IF EXISTS {table_name}"

    def _render_columns(self, model: Type[Model]) -> List[str]:
        pieces: List[str] = []
        for identity in model._require_schema().attributes.values():
            attribute_type = identity.type
            column_def = self.dialect.render_column_definition(
                identity.name,
                attribute_type.column_type(self.dialect),
                nullable=attribute_type.nullable and not attribute_type.is_pk,
            )
            extras: List[str] = []
            if attribute_type.is_pk:
                if attribute_type.column_kind == "integer":
                    extras.append(self.dialect.identity_clause())
                extras.append("PRIMARY KEY")
            default_sql = attribute_type.default_sql(self.dialect)
            if default_sql:
                extras.append(f"DEFAULT {default_sql}")
            extras = [extra for extra in extras if extra]
            if extras:
                column_def = f"{column_def} {' '.join(extras)}"
            pieces.append(column_def)
        return pieces

    def _render_foreign_keys(self, model: Type[Model]) -> List[str]:
        constraints: List[str] = []
        for identity in model._require_schema().foreign_keys():
            collection, attribute = split_reference(identity.type.fk)
            clause = (
                f"FOREIGN KEY ({self.dialect.quote_identifier(identity.name)}) "
                f"REFERENCES {self.dialect.format_table(collection)} ({self.dialect.quote_identifier(attribute)})"
            )
            if identity.type.deferred:
                clause += " DEFERRABLE INITIALLY DEFERRED"
            constraints.append(clause)
        return constraints

    @staticmethod
    def dependency_order(database: "Database") -> List[Type[Model]]:
        models = {model._meta.collection: model for model in database.models}
        ordered: Dict[str, Type[Model]] = {}

        def references(model: Type[Model]) -> List[str]:
            identities: List["AttributeIdentity"] = list(model._require_schema().foreign_keys())
            return [split_reference(identity.type.fk)[0] for identity in identities]

        def visit(collection: str, trail: tuple) -> None:
            if collection in ordered or collection in trail or collection not in models:
                return
            for target in references(models[collection]):
                if target != collection:
                    visit(target, trail + (collection,))
            ordered[collection] = models[collection]

        for collection in models:
            visit(collection, ())
        return list(ordered.values())
