"""
Script runners for sqlsteward.
"""

from typing import Optional

from .base import ScriptRunner
from .process import ProcessScriptRunner
from .sql import SqlScriptRunner
from .shell import ShellScriptRunner
from .psql import PsqlScriptRunner
from .dispatcher import FileExtensionDispatcher
from ..config import RunnersConfig
from ..database.connection import ConnectionConfig, ConnectionPool


def create_default_runner(
    pool: ConnectionPool,
    connection: ConnectionConfig,
    transactional: bool = True,
    settings: Optional[RunnersConfig] = None,
) -> ScriptRunner:
    """SQL runner for every script, shell runner for .sh and psql for .psql scripts."""
    settings = settings or RunnersConfig()
    return FileExtensionDispatcher(
        default=SqlScriptRunner(pool, transactional=transactional),
        runners={
            "sh": ShellScriptRunner(
                connection, interpreter=settings.shell_interpreter, timeout=settings.timeout
            ),
            "psql": PsqlScriptRunner(
                connection,
                command=settings.psql_command,
                parameters=settings.script_parameters,
                pre_script=settings.psql_pre_script,
                post_script=settings.psql_post_script,
                single_transaction=transactional,
                timeout=settings.timeout,
            ),
        },
    )


__all__ = [
    "ScriptRunner",
    "ProcessScriptRunner",
    "SqlScriptRunner",
    "ShellScriptRunner",
    "PsqlScriptRunner",
    "FileExtensionDispatcher",
    "create_default_runner",
]
