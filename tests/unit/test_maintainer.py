"""
Unit tests for the database maintainer.
"""

import re
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from sqlsteward.analyzer import ACKNOWLEDGED_CHANGE_MARKER, ScriptUpdatesAnalyzer
from sqlsteward.database.cleaner import SchemaCleaner
from sqlsteward.exceptions import IrregularUpdateError, PreviousScriptFailedError, ScriptExecutionError
from sqlsteward.history import ExecutedScriptInfoSource
from sqlsteward.maintainer import DatabaseMaintainer, UpdateMode, build_analyzer
from sqlsteward.runner import FileExtensionDispatcher
from sqlsteward.script.model import ScriptKind
from tests.conftest import make_executed, make_script


PRE = make_script("preprocessing/pre.sql", kind=ScriptKind.PREPROCESSING)
FIRST = make_script("01_a.sql", "CREATE TABLE a (id int);", indexes=[1])
SECOND = make_script("02_b.sql", "CREATE TABLE b (id int);", indexes=[2])
VIEW = make_script("views.sql", "CREATE VIEW v AS SELECT 1;", kind=ScriptKind.REPEATABLE)
POST = make_script("postprocessing/post.sql", kind=ScriptKind.POSTPROCESSING)


@pytest.fixture
def repository():
    repository = MagicMock()
    repository.all_scripts.return_value = (FIRST, SECOND, PRE, VIEW, POST)
    return repository


@pytest.fixture
def history():
    history = MagicMock(spec=ExecutedScriptInfoSource)
    history.ensure_table = AsyncMock(return_value=False)
    history.get_executed_scripts = AsyncMock(return_value=[])
    history.register_executed_script = AsyncMock()
    history.rename_executed_script = AsyncMock()
    history.delete_executed_script = AsyncMock()
    history.delete_all_executed_scripts = AsyncMock()
    history.recreate_table = AsyncMock()
    history.mark_error_scripts_as_successful = AsyncMock(return_value=2)
    history.remove_error_scripts = AsyncMock(return_value=1)
    return history


@pytest.fixture
def runner():
    runner = MagicMock()
    runner.execute = AsyncMock()
    runner.close = AsyncMock()
    return runner


@pytest.fixture
def cleaner():
    cleaner = MagicMock(spec=SchemaCleaner)
    cleaner.clear = AsyncMock(return_value=["public"])
    return cleaner


@pytest.fixture
def maintainer(repository, history, runner, cleaner):
    return DatabaseMaintainer(
        repository=repository,
        history=history,
        runner=runner,
        analyzer=ScriptUpdatesAnalyzer(),
        cleaner=cleaner,
        from_scratch_enabled=False,
    )


class InMemoryDatabase:
    """Pool stand-in that tracks which tables exist and which scripts are recorded."""

    def __init__(self, tables):
        self.tables = set(tables)
        self.recorded = []

    @asynccontextmanager
    async def acquire(self):
        yield self

    @asynccontextmanager
    async def transaction(self):
        yield

    async def execute(self, sql, *args):
        sql = " ".join(sql.split())
        dropped = re.match(r'DROP SCHEMA IF EXISTS "(\w+)"', sql)
        created = re.match(r'CREATE TABLE IF NOT EXISTS "(\w+)"\."(\w+)"', sql)
        written = re.match(r'(INSERT INTO|DELETE FROM) "(\w+)"\."(\w+)"', sql)
        if dropped:
            self.tables = {t for t in self.tables if t[0] != dropped.group(1)}
        elif created:
            self.tables.add(created.groups())
        elif written:
            if written.group(2, 3) not in self.tables:
                raise RuntimeError(f"relation {written.group(3)} does not exist")
            if written.group(1) == "INSERT INTO":
                self.recorded.append((args[0], args[7]))
            else:
                self.recorded = []
        return "OK"

    async def fetchval(self, sql, schema, table):
        return (schema, table) in self.tables

    async def fetch(self, sql, *args):
        return []


def executed_names(runner):
    return [c.args[0].file_name for c in runner.execute.call_args_list]


def recorded(history):
    return [
        (c.args[0].file_name, c.args[0].succeeded)
        for c in history.register_executed_script.call_args_list
    ]


class TestAnalyze:
    """Test cases for DatabaseMaintainer.analyze."""

    @pytest.mark.asyncio
    async def test_analyze_uses_history(self, maintainer, history):
        history.get_executed_scripts.return_value = [make_executed(s) for s in (FIRST, SECOND, PRE, VIEW, POST)]

        updates = await maintainer.analyze()

        history.ensure_table.assert_called_once()
        assert updates.is_empty


class TestIncrementalUpdate:
    """Test cases for incremental updates."""

    @pytest.mark.asyncio
    async def test_first_update_runs_everything(self, maintainer, runner, history):
        result = await maintainer.update_database()

        assert result.mode == UpdateMode.INCREMENTAL
        assert executed_names(runner) == [
            "preprocessing/pre.sql", "01_a.sql", "02_b.sql", "views.sql", "postprocessing/post.sql",
        ]
        assert all(succeeded for _, succeeded in recorded(history))
        assert result.script_count == 5

    @pytest.mark.asyncio
    async def test_up_to_date(self, maintainer, runner, history):
        history.get_executed_scripts.return_value = [make_executed(s) for s in (FIRST, SECOND, PRE, VIEW, POST)]

        result = await maintainer.update_database()

        assert result.is_up_to_date
        runner.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_new_script_runs_with_processing_scripts(self, maintainer, runner, history):
        history.get_executed_scripts.return_value = [make_executed(s) for s in (FIRST, PRE, VIEW, POST)]

        result = await maintainer.update_database()

        assert executed_names(runner) == ["preprocessing/pre.sql", "02_b.sql", "postprocessing/post.sql"]
        assert [s.file_name for s in result.planned_scripts] == executed_names(runner)

    @pytest.mark.asyncio
    async def test_dry_run_executes_nothing(self, maintainer, runner, history):
        history.get_executed_scripts.return_value = [make_executed(s) for s in (FIRST, PRE, VIEW, POST)]

        result = await maintainer.update_database(dry_run=True)

        assert result.dry_run
        assert [s.file_name for s in result.planned_scripts] == [
            "preprocessing/pre.sql", "02_b.sql", "postprocessing/post.sql",
        ]
        runner.execute.assert_not_called()
        history.register_executed_script.assert_not_called()

    @pytest.mark.asyncio
    async def test_renames_and_deletions_update_history(self, maintainer, runner, history, repository):
        renamed = make_script("01_create_a.sql", "CREATE TABLE a (id int);", indexes=[1])
        repository.all_scripts.return_value = (renamed, SECOND, PRE, POST)
        history.get_executed_scripts.return_value = [make_executed(s) for s in (FIRST, SECOND, PRE, VIEW, POST)]

        result = await maintainer.update_database()

        history.rename_executed_script.assert_called_once_with(FIRST, renamed)
        history.delete_executed_script.assert_called_once_with(VIEW)
        runner.execute.assert_not_called()
        assert result.mode == UpdateMode.INCREMENTAL

    @pytest.mark.asyncio
    async def test_failed_script_is_recorded_and_raised(self, maintainer, runner, history):
        runner.execute.side_effect = [None, ScriptExecutionError("01_a.sql", "boom")]

        with pytest.raises(ScriptExecutionError):
            await maintainer.update_database()

        assert recorded(history) == [("preprocessing/pre.sql", True), ("01_a.sql", False)]

    @pytest.mark.asyncio
    async def test_unexpected_runner_error_is_wrapped(self, maintainer, runner, history):
        runner.execute.side_effect = RuntimeError("connection lost")

        with pytest.raises(ScriptExecutionError, match="connection lost"):
            await maintainer.update_database()

        assert recorded(history) == [("preprocessing/pre.sql", False)]

    @pytest.mark.asyncio
    async def test_previous_failure_blocks_update(self, maintainer, runner, history):
        history.get_executed_scripts.return_value = [
            make_executed(FIRST, succeeded=False),
            make_executed(PRE),
        ]

        with pytest.raises(PreviousScriptFailedError, match="01_a.sql"):
            await maintainer.update_database()

        runner.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_postprocessing_script_is_rerun(self, maintainer, runner, history):
        history.get_executed_scripts.return_value = [
            make_executed(s) for s in (FIRST, SECOND, PRE, VIEW)
        ] + [make_executed(POST, succeeded=False)]

        await maintainer.update_database()

        assert executed_names(runner) == ["postprocessing/post.sql"]


class TestFromScratchUpdate:
    """Test cases for from-scratch rebuilds."""

    @pytest.fixture
    def irregular_history(self, history):
        history.get_executed_scripts.return_value = [
            make_executed(FIRST, content="CREATE TABLE a (id bigint);"),
            make_executed(SECOND),
        ]
        return history

    @pytest.mark.asyncio
    async def test_irregular_updates_without_from_scratch(self, maintainer, irregular_history, runner):
        with pytest.raises(IrregularUpdateError) as exc_info:
            await maintainer.update_database()

        assert exc_info.value.descriptions == ["contents of indexed script 01_a.sql have changed"]
        runner.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_irregular_updates_trigger_rebuild(self, maintainer, irregular_history, runner, cleaner):
        maintainer.from_scratch_enabled = True

        result = await maintainer.update_database()

        assert result.mode == UpdateMode.FROM_SCRATCH
        cleaner.clear.assert_called_once()
        irregular_history.recreate_table.assert_called_once()
        assert executed_names(runner) == [
            "preprocessing/pre.sql", "01_a.sql", "02_b.sql", "views.sql", "postprocessing/post.sql",
        ]

    @pytest.mark.asyncio
    async def test_forced_rebuild(self, maintainer, history, cleaner, runner):
        history.get_executed_scripts.return_value = [make_executed(s) for s in (FIRST, SECOND, PRE, VIEW, POST)]

        result = await maintainer.update_database(from_scratch=True)

        assert result.mode == UpdateMode.FROM_SCRATCH
        cleaner.clear.assert_called_once()
        assert runner.execute.call_count == 5

    @pytest.mark.asyncio
    async def test_rebuild_dry_run(self, maintainer, irregular_history, cleaner, runner):
        maintainer.from_scratch_enabled = True

        result = await maintainer.update_database(dry_run=True)

        assert result.mode == UpdateMode.FROM_SCRATCH
        assert len(result.planned_scripts) == 5
        cleaner.clear.assert_not_called()
        runner.execute.assert_not_called()


class TestDataCleaningAndSequences:
    """Test cases for cleaning data and raising sequences around script execution."""

    @pytest.fixture
    def calls(self):
        return []

    @pytest.fixture
    def support(self, maintainer, runner, calls):
        maintainer.data_cleaner = MagicMock()
        maintainer.data_cleaner.clean = AsyncMock(
            side_effect=lambda: calls.append("clean") or ["public.users"]
        )
        maintainer.sequence_updater = MagicMock()
        maintainer.sequence_updater.update = AsyncMock(
            side_effect=lambda: calls.append("sequences") or ["public.users_id_seq"]
        )
        runner.execute.side_effect = lambda script: calls.append(script.file_name)
        return maintainer

    @pytest.mark.asyncio
    async def test_clean_before_and_sequences_after_scripts(self, support, history, calls):
        history.get_executed_scripts.return_value = [make_executed(s) for s in (FIRST, PRE, VIEW, POST)]

        result = await support.update_database()

        assert calls == [
            "clean", "preprocessing/pre.sql", "02_b.sql", "postprocessing/post.sql", "sequences",
        ]
        assert result.cleaned_tables == ["public.users"]
        assert result.updated_sequences == ["public.users_id_seq"]

    @pytest.mark.asyncio
    async def test_nothing_happens_when_up_to_date(self, support, history, calls):
        history.get_executed_scripts.return_value = [make_executed(s) for s in (FIRST, SECOND, PRE, VIEW, POST)]

        await support.update_database()

        assert calls == []

    @pytest.mark.asyncio
    async def test_dry_run_neither_cleans_nor_raises_sequences(self, support, calls):
        await support.update_database(dry_run=True)

        assert calls == []

    @pytest.mark.asyncio
    async def test_rebuild_raises_sequences_without_cleaning(self, support, calls):
        await support.update_database(from_scratch=True)

        assert "clean" not in calls
        assert calls[-1] == "sequences"


class TestMarkOperations:
    """Test cases for updating the history without running scripts."""

    @pytest.mark.asyncio
    async def test_mark_database_as_up_to_date(self, maintainer, history, runner):
        count = await maintainer.mark_database_as_up_to_date()

        assert count == 5
        history.delete_all_executed_scripts.assert_called_once()
        assert len(recorded(history)) == 5
        runner.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_mark_error_scripts(self, maintainer, history):
        assert await maintainer.mark_error_scripts_performed() == 2
        assert await maintainer.mark_error_scripts_reverted() == 1


class TestWiring:
    """Test cases for building a maintainer from configuration."""

    def test_from_config(self, sample_config, mock_pool):
        maintainer = DatabaseMaintainer.from_config(sample_config, mock_pool)

        assert maintainer.from_scratch_enabled
        assert maintainer.history.auto_create
        assert maintainer.cleaner.schemas == ["public", "app"]
        assert isinstance(maintainer.runner, FileExtensionDispatcher)
        assert len(maintainer.repository.all_scripts()) == 6
        assert maintainer.data_cleaner is None
        assert maintainer.sequence_updater is None

    def test_from_config_with_test_database_support(self, sample_config, mock_pool):
        sample_config.policy.clean_db = True
        sample_config.policy.preserve_tables = ["countries"]
        sample_config.policy.update_sequences = True
        sample_config.policy.lowest_sequence_value = 5000

        maintainer = DatabaseMaintainer.from_config(sample_config, mock_pool)

        assert maintainer.data_cleaner.is_preserved("app", "countries")
        assert maintainer.data_cleaner.is_preserved("public", "sqlsteward_scripts")
        assert not maintainer.data_cleaner.is_preserved("app", "sqlsteward_scripts")
        assert maintainer.sequence_updater.schemas == ["public", "app"]
        assert maintainer.sequence_updater.lowest_value == 5000

    def test_build_analyzer_acknowledge_marker(self, sample_config):
        changed = make_script("01_a.sql", f"{ACKNOWLEDGED_CHANGE_MARKER}\nSELECT 2;", indexes=[1])
        custom = make_script("01_a.sql", "-- reviewed\nSELECT 2;", indexes=[1])

        assert build_analyzer(sample_config).acknowledged_change(changed)

        sample_config.policy.acknowledge_marker = "-- reviewed"
        assert build_analyzer(sample_config).acknowledged_change(custom)

        sample_config.policy.acknowledge_marker = ""
        assert not build_analyzer(sample_config).acknowledged_change(changed)


class TestFromScratchWithStoredHistory:
    """From-scratch rebuilds against a history table living in a cleared schema."""

    @pytest.mark.asyncio
    async def test_rebuild_recreates_dropped_history_table(self, repository, runner):
        database = InMemoryDatabase(tables={("public", "sqlsteward_scripts")})
        maintainer = DatabaseMaintainer(
            repository=repository,
            history=ExecutedScriptInfoSource(database, auto_create=False),
            runner=runner,
            cleaner=SchemaCleaner(database, ["public"]),
        )

        result = await maintainer.update_database(from_scratch=True)

        assert result.mode == UpdateMode.FROM_SCRATCH
        assert ("public", "sqlsteward_scripts") in database.tables
        assert database.recorded == [
            ("preprocessing/pre.sql", True),
            ("01_a.sql", True),
            ("02_b.sql", True),
            ("views.sql", True),
            ("postprocessing/post.sql", True),
        ]
        assert executed_names(runner) == [name for name, _ in database.recorded]

    @pytest.mark.asyncio
    async def test_rebuild_keeps_history_table_outside_cleared_schemas(self, repository, runner):
        database = InMemoryDatabase(tables={("steward", "sqlsteward_scripts")})
        maintainer = DatabaseMaintainer(
            repository=repository,
            history=ExecutedScriptInfoSource(database, schema_name="steward"),
            runner=runner,
            cleaner=SchemaCleaner(database, ["public"]),
        )

        await maintainer.update_database(from_scratch=True)

        assert ("steward", "sqlsteward_scripts") in database.tables
        assert len(database.recorded) == 5
