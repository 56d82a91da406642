"""
Database maintainer for sqlsteward.

Brings a database up to date with the current scripts: analyzes script
updates, decides between an incremental update and a from-scratch rebuild,
executes the scripts and keeps the executed scripts table in sync.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

from .analyzer import (
    ACKNOWLEDGED_CHANGE_MARKER,
    Diagnostic,
    DiagnosticLevel,
    ScriptUpdates,
    ScriptUpdatesAnalyzer,
    content_starts_with,
    never_acknowledged,
)
from .config import StewardConfig
from .database.cleaner import DataCleaner, SchemaCleaner
from .database.connection import ConnectionPool
from .database.sequences import SequenceUpdater
from .exceptions import IrregularUpdateError, PreviousScriptFailedError, ScriptExecutionError
from .history import ExecutedScriptInfoSource
from .runner import ScriptRunner, create_default_runner
from .script.model import ExecutedScript, Script, ScriptKind, sorted_scripts
from .script.repository import ScriptRepository


logger = logging.getLogger(__name__)


class UpdateMode(str, Enum):
    """How the database was (or would be) updated."""

    NONE = "none"
    INCREMENTAL = "incremental"
    FROM_SCRATCH = "from_scratch"


@dataclass
class UpdateResult:
    """Result of a database update."""

    mode: UpdateMode
    updates: ScriptUpdates
    planned_scripts: List[Script]
    executed_scripts: List[Script] = field(default_factory=list)
    dry_run: bool = False
    execution_time_ms: float = 0.0
    cleaned_tables: List[str] = field(default_factory=list)
    updated_sequences: List[str] = field(default_factory=list)

    @property
    def is_up_to_date(self) -> bool:
        return self.mode == UpdateMode.NONE

    @property
    def script_count(self) -> int:
        return len(self.executed_scripts)


def build_analyzer(config: StewardConfig) -> ScriptUpdatesAnalyzer:
    """Create the script updates analyzer from the policy configuration."""
    policy = config.policy
    if policy.acknowledge_marker is None:
        acknowledged = content_starts_with(ACKNOWLEDGED_CHANGE_MARKER)
    elif policy.acknowledge_marker == "":
        acknowledged = never_acknowledged
    else:
        acknowledged = content_starts_with(policy.acknowledge_marker)

    return ScriptUpdatesAnalyzer(
        use_last_modified_dates=policy.use_last_modified_dates,
        allow_out_of_sequence_patches=policy.allow_out_of_sequence_patches,
        ignore_deletions=policy.ignore_deletions,
        acknowledged_change=acknowledged,
    )


class DatabaseMaintainer:
    """Keeps one database in sync with the scripts of a repository."""

    def __init__(
        self,
        repository: ScriptRepository,
        history: ExecutedScriptInfoSource,
        runner: ScriptRunner,
        analyzer: Optional[ScriptUpdatesAnalyzer] = None,
        cleaner: Optional[SchemaCleaner] = None,
        from_scratch_enabled: bool = False,
        data_cleaner: Optional[DataCleaner] = None,
        sequence_updater: Optional[SequenceUpdater] = None,
    ):
        self.repository = repository
        self.history = history
        self.runner = runner
        self.analyzer = analyzer or ScriptUpdatesAnalyzer()
        self.cleaner = cleaner
        self.from_scratch_enabled = from_scratch_enabled
        self.data_cleaner = data_cleaner
        self.sequence_updater = sequence_updater

    @classmethod
    def from_config(cls, config: StewardConfig, pool: ConnectionPool) -> "DatabaseMaintainer":
        """Wire a maintainer for the configured database and script locations."""
        repository = ScriptRepository(
            [Path(location) for location in config.scripts.locations],
            config.scripts.naming_settings(),
        )
        history = ExecutedScriptInfoSource(
            pool,
            table_name=config.history.table_name,
            schema_name=config.history.schema_name,
            auto_create=config.history.auto_create,
        )
        policy = config.policy
        runner = create_default_runner(
            pool,
            config.database,
            transactional=policy.transactional_scripts,
            settings=config.runners,
        )
        data_cleaner = None
        if policy.clean_db:
            # The executed scripts table always keeps its data
            preserved = [*policy.preserve_tables, f"{history.schema_name}.{history.table_name}"]
            data_cleaner = DataCleaner(pool, policy.schemas, preserved)
        sequence_updater = None
        if policy.update_sequences:
            sequence_updater = SequenceUpdater(pool, policy.schemas, policy.lowest_sequence_value)
        return cls(
            repository=repository,
            history=history,
            runner=runner,
            analyzer=build_analyzer(config),
            cleaner=SchemaCleaner(pool, policy.schemas),
            from_scratch_enabled=policy.from_scratch_enabled,
            data_cleaner=data_cleaner,
            sequence_updater=sequence_updater,
        )

    async def analyze(self) -> ScriptUpdates:
        """Compare the current scripts with the executed scripts."""
        await self.history.ensure_table()
        executed = await self.history.get_executed_scripts()
        updates = self.analyzer.analyze(self.repository.all_scripts(), executed)
        for diagnostic in updates.diagnostics:
            _log_diagnostic(diagnostic)
        return updates

    async def update_database(self, dry_run: bool = False, from_scratch: bool = False) -> UpdateResult:
        """
        Bring the database up to date.

        Irregular script updates trigger a from-scratch rebuild when that is
        enabled and raise IrregularUpdateError otherwise. With dry_run the
        plan is computed but nothing is executed or recorded.
        """
        start_time = time.time()
        updates = await self.analyze()

        if from_scratch or updates.has_irregular_updates:
            if not (from_scratch or self.from_scratch_enabled):
                raise IrregularUpdateError([u.description for u in updates.irregularly_updated])
            result = await self._update_from_scratch(updates, dry_run)
        else:
            result = await self._update_incrementally(updates, dry_run)

        result.execution_time_ms = (time.time() - start_time) * 1000
        if result.is_up_to_date:
            logger.info("The database is up to date")
        elif not dry_run:
            logger.info(
                f"Database updated ({result.mode.value}): {result.script_count} scripts "
                f"executed in {result.execution_time_ms:.0f}ms"
            )
        return result

    async def mark_database_as_up_to_date(self) -> int:
        """Record every current script as executed successfully, without running anything."""
        await self.history.ensure_table()
        await self.history.delete_all_executed_scripts()
        now = datetime.now(timezone.utc)
        scripts = self.repository.all_scripts()
        for script in scripts:
            await self.history.register_executed_script(
                ExecutedScript(script=script, executed_at=now, succeeded=True)
            )
        logger.info(f"Marked {len(scripts)} scripts as executed")
        return len(scripts)

    async def mark_error_scripts_performed(self) -> int:
        """Consider failed scripts as fixed by hand."""
        await self.history.ensure_table()
        count = await self.history.mark_error_scripts_as_successful()
        logger.info(f"Marked {count} failed scripts as successfully executed")
        return count

    async def mark_error_scripts_reverted(self) -> int:
        """Consider failed scripts as reverted, so they run again on the next update."""
        await self.history.ensure_table()
        count = await self.history.remove_error_scripts()
        logger.info(f"Removed {count} failed scripts from the executed scripts")
        return count

    async def _update_from_scratch(self, updates: ScriptUpdates, dry_run: bool) -> UpdateResult:
        scripts = self._from_scratch_order(self.repository.all_scripts())
        result = UpdateResult(
            mode=UpdateMode.FROM_SCRATCH,
            updates=updates,
            planned_scripts=list(scripts),
            dry_run=dry_run,
        )
        if dry_run:
            return result

        for update in updates.irregularly_updated:
            logger.warning(f"Irregular script update: {update.description}")
        logger.info("Recreating the database from scratch")

        if self.cleaner is not None:
            await self.cleaner.clear()
        # The executed scripts table may have been dropped with one of the cleared schemas
        await self.history.recreate_table()

        result.executed_scripts = await self._execute_scripts(scripts)
        await self._update_sequences(result)
        return result

    async def _update_incrementally(self, updates: ScriptUpdates, dry_run: bool) -> UpdateResult:
        await self._check_previous_failures(updates)

        scripts = updates.execution_order(self.repository.all_scripts())
        mode = UpdateMode.INCREMENTAL if (scripts or not updates.is_empty) else UpdateMode.NONE
        result = UpdateResult(
            mode=mode,
            updates=updates,
            planned_scripts=list(scripts),
            dry_run=dry_run,
        )
        if dry_run or mode == UpdateMode.NONE:
            return result

        await self._register_history_changes(updates)
        if scripts and self.data_cleaner is not None:
            result.cleaned_tables = await self.data_cleaner.clean()
        result.executed_scripts = await self._execute_scripts(scripts)
        if scripts:
            await self._update_sequences(result)
        return result

    async def _update_sequences(self, result: UpdateResult) -> None:
        if self.sequence_updater is not None:
            result.updated_sequences = await self.sequence_updater.update()

    async def _check_previous_failures(self, updates: ScriptUpdates) -> None:
        """Failed incremental and repeatable scripts must be fixed before updating again."""
        changed = {
            name
            for update in updates.all_updates()
            for name in (update.script.file_name, update.target_script.file_name)
        }
        for executed in await self.history.get_executed_scripts():
            if executed.failed and executed.script.kind in (ScriptKind.INCREMENTAL, ScriptKind.REPEATABLE):
                if executed.file_name not in changed:
                    raise PreviousScriptFailedError(executed.file_name)

    async def _register_history_changes(self, updates: ScriptUpdates) -> None:
        for update in updates.regular_updates():
            if update.update_type.is_rename:
                await self.history.rename_executed_script(update.script, update.renamed_to)
            elif update.update_type.is_deletion:
                await self.history.delete_executed_script(update.script)
                logger.info(f"Removed deleted script {update.script.file_name} from the executed scripts")
        for update in updates.ignored:
            logger.info(f"Ignored: {update.description}")

    async def _execute_scripts(self, scripts: Sequence[Script]) -> List[Script]:
        executed: List[Script] = []
        for script in scripts:
            logger.info(f"Executing script {script.file_name}")
            try:
                await self.runner.execute(script)
            except ScriptExecutionError:
                await self._record(script, succeeded=False)
                raise
            except Exception as e:
                await self._record(script, succeeded=False)
                raise ScriptExecutionError(script.file_name, str(e), cause=e) from e
            await self._record(script, succeeded=True)
            executed.append(script)
        return executed

    async def _record(self, script: Script, succeeded: bool) -> None:
        await self.history.register_executed_script(
            ExecutedScript(script=script, executed_at=datetime.now(timezone.utc), succeeded=succeeded)
        )

    @staticmethod
    def _from_scratch_order(scripts: Sequence[Script]) -> List[Script]:
        ordered = sorted_scripts(scripts)
        return (
            [s for s in ordered if s.is_preprocessing]
            + [s for s in ordered if s.is_incremental or s.is_repeatable]
            + [s for s in ordered if s.is_postprocessing]
        )


def _log_diagnostic(diagnostic: Diagnostic) -> None:
    if diagnostic.level == DiagnosticLevel.ERROR:
        logger.error(diagnostic.message)
    elif diagnostic.level == DiagnosticLevel.WARNING:
        logger.warning(diagnostic.message)
    else:
        logger.info(diagnostic.message)
