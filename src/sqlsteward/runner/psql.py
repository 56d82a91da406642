"""
psql script runner.

Runs scripts through the psql command line client, for scripts that rely on
psql meta-commands such as \\copy, \\set or \\i.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from .process import ProcessScriptRunner
from ..database.connection import ConnectionConfig


logger = logging.getLogger(__name__)

_VARIABLE_NAME = re.compile(r"^\w+$")


class PsqlScriptRunner(ProcessScriptRunner):
    """
    Runs scripts with psql.

    psql stops at the first error and exits with a non-zero code. Script
    parameters become psql variables, usable as :name, :'name' or :"name"
    inside the script. The optional pre and post scripts run in the same
    psql session, right before and after every script.
    """

    def __init__(
        self,
        connection: ConnectionConfig,
        command: str = "psql",
        parameters: Optional[Dict[str, str]] = None,
        pre_script: Optional[str] = None,
        post_script: Optional[str] = None,
        single_transaction: bool = True,
        timeout: Optional[float] = None,
        extra_env: Optional[Dict[str, str]] = None,
    ):
        super().__init__(connection, timeout=timeout, extra_env=extra_env)
        self.command = command
        self.pre_script = pre_script
        self.post_script = post_script
        self.single_transaction = single_transaction
        self.parameters: Dict[str, str] = {}
        for name, value in (parameters or {}).items():
            if _VARIABLE_NAME.match(name):
                self.parameters[name] = str(value)
            else:
                logger.warning(f"Script parameter '{name}' is not a valid psql variable name, skipping it")

    def build_command(self, path: Path) -> List[str]:
        command = [self.command, "--no-psqlrc", "--quiet", "-v", "ON_ERROR_STOP=1"]
        if self.single_transaction:
            command.append("--single-transaction")
        for name, value in sorted(self.parameters.items()):
            command += ["-v", f"{name}={value}"]
        for script_file in (self.pre_script, path, self.post_script):
            if script_file:
                command += ["--file", str(script_file)]
        return command

    def __repr__(self) -> str:
        return f"PsqlScriptRunner({self.command!r})"
