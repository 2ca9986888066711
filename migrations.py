"""
Idempotent schema migrations, run once before the API serves traffic.

Usage:
    python migrations.py
"""

import logging
import sys

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from database import Base, Database
from errors import SchemaMigrationError
import models  # noqa: F401  registers CountryDB on Base.metadata

logger = logging.getLogger(__name__)

# Columns the refresh writes NULL into; older MySQL tables declared them NOT NULL.
NULLABLE_COLUMNS = {
    "currency_code": "VARCHAR(10) NULL",
    "exchange_rate": "DOUBLE NULL",
    "estimated_gdp": "DOUBLE NULL",
}


def create_tables(engine: Engine):
    Base.metadata.create_all(bind=engine)


def relax_nullable_columns(engine: Engine):
    if engine.dialect.name != "mysql":
        return

    columns = {column["name"]: column for column in inspect(engine).get_columns("countries")}
    clauses = [
        f"MODIFY {name} {definition}"
        for name, definition in NULLABLE_COLUMNS.items()
        if name in columns and not columns[name]["nullable"]
    ]
    if not clauses:
        return

    with engine.begin() as conn:
        conn.execute(text(f"ALTER TABLE countries {', '.join(clauses)}"))


# (name, step, required): a failed optional step is logged and skipped
MIGRATIONS = [
    ("create_tables", create_tables, True),
    ("relax_nullable_columns", relax_nullable_columns, False),
]


def run_migrations(engine: Engine):
    """
    Apply every migration in order. Each step is safe to re-run.

    Raises:
        SchemaMigrationError: naming the required step that failed
    """
    for name, migration, required in MIGRATIONS:
        logger.info("Running migration: %s", name)
        try:
            migration(engine)
        except Exception as e:
            if required:
                raise SchemaMigrationError(f"Migration {name} failed: {e}") from e
            logger.warning("Optional migration %s failed, continuing: %s", name, e)
    logger.info("All migrations applied")


if __name__ == "__main__":
    from config import settings

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    database = Database.from_settings(settings)
    try:
        run_migrations(database.engine)
    except SchemaMigrationError:
        logger.exception("Migration failed")
        sys.exit(1)
    finally:
        database.dispose()
