"""
SQL script runner executing scripts through asyncpg.
"""

import logging

from .base import ScriptRunner
from ..database.connection import ConnectionPool
from ..exceptions import ScriptExecutionError
from ..script.model import Script


logger = logging.getLogger(__name__)


class SqlScriptRunner(ScriptRunner):
    """
    Runs SQL scripts on PostgreSQL.

    The whole script is sent as one simple query, so it may contain any
    number of statements, including function bodies with semicolons.
    """

    def __init__(self, pool: ConnectionPool, transactional: bool = True):
        super().__init__()
        self.pool = pool
        self.transactional = transactional

    async def execute(self, script: Script) -> None:
        sql = script.read_content()
        if not sql.strip():
            self.logger.info(f"Script {script.file_name} is empty, nothing to execute")
            return

        try:
            async with self.pool.acquire() as conn:
                if self.transactional:
                    async with conn.transaction():
                        await conn.execute(sql)
                else:
                    await conn.execute(sql)
        except Exception as e:
            raise ScriptExecutionError(script.file_name, str(e), cause=e) from e

        self.logger.debug(f"Executed SQL script {script.file_name}")
