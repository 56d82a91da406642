"""
Executed scripts history for sqlsteward.

Reads and writes the table that records every script executed on the
database, one row per script file name.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from .database.cleaner import quote_identifier
from .database.connection import ConnectionPool
from .exceptions import HistoryError, HistoryTableMissingError
from .script.model import ExecutedScript, Script, ScriptIndexes, ScriptKind


logger = logging.getLogger(__name__)


class ExecutedScriptInfoSource:
    """Persists the executed scripts in a database table."""

    def __init__(
        self,
        pool: ConnectionPool,
        table_name: str = "sqlsteward_scripts",
        schema_name: str = "public",
        auto_create: bool = False,
    ):
        self.pool = pool
        self.table_name = table_name
        self.schema_name = schema_name
        self.auto_create = auto_create
        self._executed_scripts: Optional[List[ExecutedScript]] = None

    @property
    def qualified_table_name(self) -> str:
        return f"{quote_identifier(self.schema_name)}.{quote_identifier(self.table_name)}"

    def get_table_ddl(self) -> str:
        """Get DDL for the executed scripts table."""
        return f"""
        CREATE TABLE IF NOT EXISTS {self.qualified_table_name} (
            file_name VARCHAR(1000) PRIMARY KEY,
            file_last_modified_at BIGINT,
            checksum VARCHAR(50) NOT NULL,
            script_indexes VARCHAR(255),
            script_kind VARCHAR(20) NOT NULL,
            is_patch BOOLEAN NOT NULL DEFAULT FALSE,
            executed_at TIMESTAMPTZ,
            succeeded BOOLEAN NOT NULL,

            CONSTRAINT valid_script_kind CHECK (
                script_kind IN ('incremental', 'repeatable', 'preprocessing', 'postprocessing')
            )
        );
        """

    async def ensure_table(self) -> bool:
        """
        Make sure the executed scripts table exists.

        Returns True when the table was created. Raises
        HistoryTableMissingError when it is missing and auto creation is off.
        """
        check_sql = """
        SELECT EXISTS (
            SELECT 1 FROM information_schema.tables
            WHERE table_schema = $1 AND table_name = $2
        )
        """
        async with self.pool.acquire() as conn:
            exists = await conn.fetchval(check_sql, self.schema_name, self.table_name)
            if exists:
                logger.debug(f"Table {self.qualified_table_name} already exists")
                return False

            ddl = self.get_table_ddl()
            if not self.auto_create:
                raise HistoryTableMissingError(self.table_name, ddl)

            await conn.execute(f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(self.schema_name)}")
            await conn.execute(ddl)
            logger.info(f"Created table {self.qualified_table_name}")
            return True

    async def recreate_table(self) -> None:
        """
        Create the executed scripts table if needed and empty it.

        Used right after the schemas were cleared for a from-scratch rebuild,
        when the table may have been dropped with its schema. Ignores
        auto_create: the table existed before the schemas were cleared.
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(self.schema_name)}")
                    await conn.execute(self.get_table_ddl())
                    await conn.execute(f"DELETE FROM {self.qualified_table_name}")
        except Exception as e:
            raise HistoryError(f"Failed to recreate executed scripts table: {e}", cause=e) from e
        logger.info(f"Recreated table {self.qualified_table_name}")
        self._executed_scripts = []

    async def get_executed_scripts(self) -> List[ExecutedScript]:
        """All executed scripts, as recorded in the table."""
        if self._executed_scripts is None:
            sql = f"""
            SELECT file_name, file_last_modified_at, checksum, script_indexes,
                   script_kind, is_patch, executed_at, succeeded
            FROM {self.qualified_table_name}
            """
            try:
                rows = await self.pool.fetch(sql)
            except Exception as e:
                raise HistoryError(f"Failed to read executed scripts: {e}", cause=e) from e
            self._executed_scripts = [self._row_to_executed_script(row) for row in rows]
        return list(self._executed_scripts)

    async def register_executed_script(self, executed: ExecutedScript) -> None:
        """Insert or replace the record of an executed script."""
        script = executed.script
        sql = f"""
        INSERT INTO {self.qualified_table_name} (
            file_name, file_last_modified_at, checksum, script_indexes,
            script_kind, is_patch, executed_at, succeeded
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        ON CONFLICT (file_name) DO UPDATE SET
            file_last_modified_at = EXCLUDED.file_last_modified_at,
            checksum = EXCLUDED.checksum,
            script_indexes = EXCLUDED.script_indexes,
            script_kind = EXCLUDED.script_kind,
            is_patch = EXCLUDED.is_patch,
            executed_at = EXCLUDED.executed_at,
            succeeded = EXCLUDED.succeeded
        """
        await self._write(
            sql,
            script.file_name,
            script.last_modified,
            script.checksum,
            script.indexes.indexes_string or None,
            script.kind.value,
            script.is_patch,
            executed.executed_at or datetime.now(timezone.utc),
            executed.succeeded,
        )
        self._forget(script.file_name)
        if self._executed_scripts is not None:
            self._executed_scripts.append(executed)

    async def rename_executed_script(self, old: Script, new: Script) -> None:
        """Let the record of the old script point to the new script."""
        sql = f"""
        UPDATE {self.qualified_table_name}
        SET file_name = $2, file_last_modified_at = $3, checksum = $4,
            script_indexes = $5, script_kind = $6, is_patch = $7
        WHERE file_name = $1
        """
        await self._write(
            sql,
            old.file_name,
            new.file_name,
            new.last_modified,
            new.checksum,
            new.indexes.indexes_string or None,
            new.kind.value,
            new.is_patch,
        )
        logger.info(f"Renamed executed script {old.file_name} to {new.file_name}")
        self._executed_scripts = None

    async def delete_executed_script(self, script: Script) -> None:
        """Remove the record of a script."""
        await self._write(
            f"DELETE FROM {self.qualified_table_name} WHERE file_name = $1", script.file_name
        )
        self._forget(script.file_name)

    async def delete_all_executed_scripts(self) -> None:
        """Remove every record, e.g. before marking the database as up to date."""
        await self._write(f"DELETE FROM {self.qualified_table_name}")
        self._executed_scripts = []

    async def mark_error_scripts_as_successful(self) -> int:
        """Mark every failed script as executed successfully."""
        status = await self._write(
            f"UPDATE {self.qualified_table_name} SET succeeded = TRUE WHERE succeeded = FALSE"
        )
        self._executed_scripts = None
        return _affected_rows(status)

    async def remove_error_scripts(self) -> int:
        """Remove the records of every failed script, as if they never ran."""
        status = await self._write(
            f"DELETE FROM {self.qualified_table_name} WHERE succeeded = FALSE"
        )
        self._executed_scripts = None
        return _affected_rows(status)

    def clear_cache(self) -> None:
        self._executed_scripts = None

    async def _write(self, sql: str, *args) -> str:
        try:
            return await self.pool.execute(sql, *args)
        except Exception as e:
            raise HistoryError(f"Failed to update executed scripts: {e}", cause=e) from e

    def _forget(self, file_name: str) -> None:
        if self._executed_scripts is not None:
            self._executed_scripts = [
                e for e in self._executed_scripts if e.file_name != file_name
            ]

    @staticmethod
    def _row_to_executed_script(row) -> ExecutedScript:
        script = Script(
            row["file_name"],
            kind=ScriptKind(row["script_kind"]),
            indexes=ScriptIndexes.parse(row["script_indexes"]),
            is_patch=row["is_patch"],
            checksum=row["checksum"],
            last_modified=row["file_last_modified_at"],
        )
        return ExecutedScript(
            script=script,
            executed_at=row["executed_at"],
            succeeded=row["succeeded"],
        )


def _affected_rows(status: str) -> int:
    """Row count of an asyncpg command status such as 'UPDATE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0
