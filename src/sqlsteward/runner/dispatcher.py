"""
Script runner selection by file extension.
"""

import logging
from typing import Dict, Optional

from .base import ScriptRunner
from ..script.model import Script


logger = logging.getLogger(__name__)


class FileExtensionDispatcher(ScriptRunner):
    """
    Delegates every script to the runner registered for its file extension.

    Scripts with an extension that has no registered runner go to the
    default runner.
    """

    def __init__(self, default: ScriptRunner, runners: Optional[Dict[str, ScriptRunner]] = None):
        super().__init__()
        self.default = default
        self.runners = {ext.lower().lstrip("."): runner for ext, runner in (runners or {}).items()}

    def runner_for(self, script: Script) -> ScriptRunner:
        return self.runners.get(script.extension, self.default)

    async def execute(self, script: Script) -> None:
        runner = self.runner_for(script)
        logger.debug(f"Executing {script.file_name} with {runner!r}")
        await runner.execute(script)

    async def close(self) -> None:
        for runner in {id(r): r for r in [self.default, *self.runners.values()]}.values():
            await runner.close()
