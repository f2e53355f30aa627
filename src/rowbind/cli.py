"""
Command line entry point.

Usage:
    rowbind up --app myapp.models
    rowbind up --app myapp.models --db kitchen --dialect postgresql --down

``up`` imports the application module, picks one of the :class:`Database`
handles it defines and writes the table creation SQL to stdout.
"""

from __future__ import annotations

import argparse
import importlib
import sys
from typing import List, Optional, Sequence, TextIO

from .core.database import Database
from .dialects import PostgresDialect, SQLiteDialect
from .schema import SchemaBuilder
from .utils import get_logger

logger = get_logger("cli")

_DIALECTS = {
    "sqlite": SQLiteDialect,
    "postgresql": PostgresDialect,
}


class InvalidInvocation(Exception):
    """Raised when command line input cannot be acted on."""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rowbind", description="rowbind schema tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    up_parser = subparsers.add_parser("up", help="Write table creation SQL for an application")
    up_parser.add_argument("--app", required=True, help="Module defining the models and database")
    up_parser.add_argument("--db", help="Database name, required when the module defines several")
    up_parser.add_argument(
        "--dialect",
        choices=sorted(_DIALECTS),
        help="SQL dialect (default: the database's configured backend, else sqlite)",
    )
    up_parser.add_argument("--down", action="store_true", help="Drop the tables before creating them")
    return parser


def find_databases(module) -> List[Database]:
    found: List[Database] = []
    for value in vars(module).values():
        if isinstance(value, Database) and all(value is not seen for seen in found):
            found.append(value)
    return found


def select_database(databases: Sequence[Database], name: Optional[str]) -> Database:
    if name is not None:
        for database in databases:
            if database.name == name:
                return database
        raise InvalidInvocation(f"Database '{name}' is not defined")
    if not databases:
        raise InvalidInvocation("No database is defined")
    if len(databases) > 1:
        names = ", ".join(database.name for database in databases)
        raise InvalidInvocation(f"Several databases are defined ({names}); pass --db")
    return databases[0]


def creation_sql(database: Database, dialect_name: Optional[str] = None, *, down: bool = False) -> str:
    if dialect_name is None:
        backend = database.config.backend if database.config is not None else "sqlite"
        dialect_name = backend if backend in _DIALECTS else "sqlite"
    builder = SchemaBuilder(_DIALECTS[dialect_name]())
    statements: List[str] = []
    if down:
        models = builder.dependency_order(database)
        statements.extend(builder.drop_table_sql(model) for model in reversed(models))
    statements.extend(builder.create_all_sql(database))
    return "".join(f"{statement};\n" for statement in statements)


def up(app: str, db: Optional[str] = None, dialect: Optional[str] = None, down: bool = False) -> str:
    try:
        module = importlib.import_module(app)
    except ImportError as exc:
        raise InvalidInvocation(f"Can't import '{app}': {exc}") from exc
    database = select_database(find_databases(module), db)
    logger.debug("Writing creation SQL for %r", database)
    return f"-- {database.name}\n" + creation_sql(database, dialect, down=down)


def main(argv: Optional[Sequence[str]] = None, stdout: TextIO = sys.stdout, stderr: TextIO = sys.stderr) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        if args.command == "up":
            stdout.write(up(args.app, args.db, args.dialect, args.down))
    except InvalidInvocation as exc:
        stderr.write(f"{exc}\n\n{parser.format_help()}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
