"""
Exception classes for sqlsteward.
"""

from typing import Any, Dict, List, Optional


class StewardError(Exception):
    """Base exception for all sqlsteward errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(StewardError):
    """Raised when there's an error in configuration."""

    pass


class DatabaseError(StewardError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when there's an error establishing or maintaining database connections."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class HistoryError(DatabaseError):
    """Raised when the executed scripts table cannot be read or written."""

    pass


class HistoryTableMissingError(HistoryError):
    """Raised when the executed scripts table does not exist and may not be created."""

    def __init__(self, table_name: str, ddl: str) -> None:
        super().__init__(
            f"Executed scripts table '{table_name}' does not exist. Enable "
            f"history.auto_create or create it manually:\n{ddl}",
            {"table": table_name},
        )
        self.table_name = table_name
        self.ddl = ddl


class ScriptError(StewardError):
    """Raised when there's an error with a script."""

    pass


class ScriptRepositoryError(ScriptError):
    """Raised when the script locations cannot be scanned."""

    pass


class InvalidScriptNameError(ScriptRepositoryError):
    """Raised when a script name cannot be parsed."""

    def __init__(self, file_name: str, reason: str) -> None:
        super().__init__(f"Invalid script name '{file_name}': {reason}")
        self.file_name = file_name
        self.reason = reason


class DuplicateScriptError(ScriptRepositoryError):
    """Raised when two script locations contain a script with the same name."""

    def __init__(self, file_name: str, locations: List[str]) -> None:
        super().__init__(
            f"Script '{file_name}' found in more than one location",
            {"locations": ", ".join(locations)},
        )
        self.file_name = file_name
        self.locations = locations


class DuplicateScriptIndexError(ScriptRepositoryError):
    """Raised when two incremental scripts share the same index."""

    def __init__(self, indexes: str, file_names: List[str]) -> None:
        super().__init__(
            f"Incremental scripts share index {indexes}: {', '.join(file_names)}"
        )
        self.indexes = indexes
        self.file_names = file_names


class ScriptExecutionError(ScriptError):
    """Raised when a script fails to execute."""

    def __init__(
        self,
        file_name: str,
        reason: str,
        output: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if output:
            details["output"] = output
        super().__init__(f"Error while executing script {file_name}: {reason}", details, cause)
        self.file_name = file_name
        self.reason = reason
        self.output = output


class UpdateError(StewardError):
    """Raised when the database cannot be brought up to date."""

    pass


class IrregularUpdateError(UpdateError):
    """Raised when irregular script updates exist and from-scratch updates are disabled."""

    def __init__(self, descriptions: List[str]) -> None:
        message = (
            "Following irregular script updates were detected, the database "
            "must be recreated from scratch but from-scratch updates are disabled:\n  - "
            + "\n  - ".join(descriptions)
        )
        super().__init__(message)
        self.descriptions = descriptions


class PreviousScriptFailedError(UpdateError):
    """Raised when a script failed during a previous run and was not fixed since."""

    def __init__(self, file_name: str) -> None:
        super().__init__(
            f"During a previous database update, the execution of script "
            f"{file_name} failed. Fix the script, or mark the failed scripts as "
            f"performed or reverted before running the update again."
        )
        self.file_name = file_name
