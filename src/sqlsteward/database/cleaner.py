"""
Schema clearing for sqlsteward.

Drops and recreates database schemas before the database is rebuilt from
scratch, and deletes table data before scripts run on a test database.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from .connection import ConnectionPool
from ..exceptions import DatabaseError


logger = logging.getLogger(__name__)


def quote_identifier(name: str) -> str:
    """Quote a PostgreSQL identifier."""
    return '"' + name.replace('"', '""') + '"'


class SchemaCleaner:
    """Drops every object of the configured schemas."""

    def __init__(self, pool: ConnectionPool, schemas: Sequence[str]):
        self.pool = pool
        self.schemas = list(schemas)

    async def clear(self) -> List[str]:
        """Drop and recreate all configured schemas, in one transaction."""
        if not self.schemas:
            logger.warning("No schemas configured to clear, the database is left as is")
            return []

        async with self.pool.acquire() as conn:
            try:
                async with conn.transaction():
                    for schema in self.schemas:
                        quoted = quote_identifier(schema)
                        await conn.execute(f"DROP SCHEMA IF EXISTS {quoted} CASCADE")
                        await conn.execute(f"CREATE SCHEMA {quoted}")
                        logger.info(f"Cleared schema {schema}")
            except Exception as e:
                logger.error(f"Failed to clear schemas {', '.join(self.schemas)}: {e}")
                raise DatabaseError(f"Failed to clear schemas: {e}", cause=e) from e

        return list(self.schemas)


class DataCleaner:
    """
    Deletes the data of every table in the configured schemas.

    Preserved tables are given as ``table`` (any schema) or ``schema.table``.
    All other tables are truncated in a single statement, so foreign keys
    between them do not get in the way.
    """

    def __init__(self, pool: ConnectionPool, schemas: Sequence[str], preserve_tables: Iterable[str] = ()):
        self.pool = pool
        self.schemas = list(schemas)
        self.preserved: Set[Tuple[Optional[str], str]] = set()
        for name in preserve_tables:
            schema, _, table = name.rpartition(".")
            self.preserved.add((schema or None, table))

    def is_preserved(self, schema: str, table: str) -> bool:
        return (schema, table) in self.preserved or (None, table) in self.preserved

    async def clean(self) -> List[str]:
        """Truncate all tables that are not preserved. Returns their qualified names."""
        sql = """
        SELECT table_schema, table_name FROM information_schema.tables
        WHERE table_schema = ANY($1::text[]) AND table_type = 'BASE TABLE'
        ORDER BY table_schema, table_name
        """
        async with self.pool.acquire() as conn:
            try:
                rows = await conn.fetch(sql, self.schemas)
                tables = [
                    (row["table_schema"], row["table_name"])
                    for row in rows
                    if not self.is_preserved(row["table_schema"], row["table_name"])
                ]
                if tables:
                    quoted = ", ".join(f"{quote_identifier(s)}.{quote_identifier(t)}" for s, t in tables)
                    await conn.execute(f"TRUNCATE TABLE {quoted}")
            except Exception as e:
                logger.error(f"Failed to delete the data of schemas {', '.join(self.schemas)}: {e}")
                raise DatabaseError(f"Failed to clean database: {e}", cause=e) from e

        logger.info(f"Deleted the data of {len(tables)} tables")
        return [f"{schema}.{table}" for schema, table in tables]
