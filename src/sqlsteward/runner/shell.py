"""
Shell script runner.

Runs shell scripts so they can call psql, pg_restore and friends against
the target database.
"""

from pathlib import Path
from typing import Dict, List, Optional

from .process import ProcessScriptRunner
from ..database.connection import ConnectionConfig


class ShellScriptRunner(ProcessScriptRunner):
    """Runs shell scripts through an interpreter."""

    def __init__(
        self,
        connection: ConnectionConfig,
        interpreter: str = "/bin/sh",
        timeout: Optional[float] = None,
        extra_env: Optional[Dict[str, str]] = None,
    ):
        super().__init__(connection, timeout=timeout, extra_env=extra_env)
        self.interpreter = interpreter

    def build_command(self, path: Path) -> List[str]:
        return [self.interpreter, str(path)]

    def __repr__(self) -> str:
        return f"ShellScriptRunner({self.interpreter!r})"
