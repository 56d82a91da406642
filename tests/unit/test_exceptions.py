"""
Unit tests for the sqlsteward exception hierarchy.
"""

import pytest

from sqlsteward.exceptions import (
    ConfigurationError,
    DatabaseError,
    DuplicateScriptError,
    DuplicateScriptIndexError,
    HistoryError,
    HistoryTableMissingError,
    InvalidScriptNameError,
    IrregularUpdateError,
    PreviousScriptFailedError,
    ScriptError,
    ScriptExecutionError,
    ScriptRepositoryError,
    StewardError,
    UpdateError,
)


class TestStewardError:
    """Test cases for the base exception."""

    def test_message_only(self):
        assert str(StewardError("failed")) == "failed"

    def test_details_and_cause(self):
        error = StewardError("failed", {"table": "t"}, cause=ValueError("inner"))

        assert str(error) == "failed [table=t] (caused by: inner)"
        assert isinstance(error.cause, ValueError)

    @pytest.mark.parametrize("error_class,base", [
        (ConfigurationError, StewardError),
        (HistoryError, DatabaseError),
        (HistoryTableMissingError, HistoryError),
        (InvalidScriptNameError, ScriptRepositoryError),
        (ScriptExecutionError, ScriptError),
        (IrregularUpdateError, UpdateError),
        (PreviousScriptFailedError, UpdateError),
    ])
    def test_hierarchy(self, error_class, base):
        assert issubclass(error_class, base)
        assert issubclass(error_class, StewardError)


class TestSpecificErrors:
    """Test cases for errors carrying extra attributes."""

    def test_history_table_missing(self):
        error = HistoryTableMissingError("executed_scripts", "CREATE TABLE executed_scripts ();")

        assert error.table_name == "executed_scripts"
        assert "CREATE TABLE executed_scripts ();" in str(error)
        assert error.details == {"table": "executed_scripts"}

    def test_script_execution_error_output(self):
        error = ScriptExecutionError("03_load.sh", "exit code 1", output="psql: error")

        assert error.file_name == "03_load.sh"
        assert str(error) == "Error while executing script 03_load.sh: exit code 1 [output=psql: error]"

    def test_duplicate_errors(self):
        duplicate = DuplicateScriptError("01_a.sql", ["first", "second"])
        duplicate_index = DuplicateScriptIndexError("1.2", ["01_a/02_b.sql", "01_a/02_c.sql"])

        assert "locations=first, second" in str(duplicate)
        assert "share index 1.2" in str(duplicate_index)

    def test_irregular_update_error_lists_updates(self):
        error = IrregularUpdateError(["indexed script 01_a.sql was deleted", "contents of x changed"])

        assert "  - indexed script 01_a.sql was deleted\n  - contents of x changed" in str(error)
        assert len(error.descriptions) == 2

    def test_previous_script_failed(self):
        error = PreviousScriptFailedError("01_a.sql")

        assert error.file_name == "01_a.sql"
        assert "01_a.sql failed" in str(error)
