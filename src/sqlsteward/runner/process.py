"""
Base class for runners that hand a script to an external program.

The target database connection is exposed through the standard libpq
environment variables, so the program needs no credentials of its own.
"""

import asyncio
import logging
import os
import tempfile
from abc import abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from .base import ScriptRunner
from ..database.connection import ConnectionConfig
from ..exceptions import ScriptExecutionError
from ..script.content import FileContentHandle
from ..script.model import Script


logger = logging.getLogger(__name__)


class ProcessScriptRunner(ScriptRunner):
    """Runs a script file through an external program and checks its exit code."""

    def __init__(
        self,
        connection: ConnectionConfig,
        timeout: Optional[float] = None,
        extra_env: Optional[Dict[str, str]] = None,
    ):
        super().__init__()
        self.connection = connection
        self.timeout = timeout
        self.extra_env = extra_env or {}

    @abstractmethod
    def build_command(self, path: Path) -> List[str]:
        """Program and arguments executing the script file at path."""

    def build_environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.connection.to_environment())
        env.update(self.extra_env)
        return env

    async def execute(self, script: Script) -> None:
        handle = script.content_handle
        if handle is None:
            raise ScriptExecutionError(script.file_name, "script content is not available")
        if isinstance(handle, FileContentHandle):
            await self._run(script, handle.path)
            return

        # Archived or in-memory scripts are written to a temporary file first
        with tempfile.TemporaryDirectory(prefix="sqlsteward-") as tmp_dir:
            path = Path(tmp_dir) / Path(script.file_name).name
            path.write_bytes(handle.read_bytes())
            await self._run(script, path)

    async def _run(self, script: Script, path: Path) -> None:
        command = self.build_command(path)
        self.logger.debug(f"Running {' '.join(command)}")
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(path.parent),
            env=self.build_environment(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ScriptExecutionError(
                script.file_name, f"timed out after {self.timeout} seconds", cause=e
            ) from e

        output = stdout.decode(errors="replace") if stdout else ""
        self.logger.info(f"Script {script.file_name} exited with code {process.returncode}")
        if output:
            self.logger.debug(f"Output of {script.file_name}:\n{output}")
        if process.returncode != 0:
            raise ScriptExecutionError(
                script.file_name, f"exit code {process.returncode}", output=output
            )
