"""
Abstract base class for script runners.

This module provides the interface that every way of executing a script
must implement.
"""

import logging
from abc import ABC, abstractmethod

from ..script.model import Script


logger = logging.getLogger(__name__)


class ScriptRunner(ABC):
    """
    Abstract base class for all script runners.

    A runner executes a single script on the target database and raises
    ScriptExecutionError when the script fails.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def execute(self, script: Script) -> None:
        """
        Execute the given script.

        Args:
            script: Script to execute, its content is read through its content handle

        Raises:
            ScriptExecutionError: If the script could not be executed
        """

    async def close(self) -> None:
        """Release resources held by the runner."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
