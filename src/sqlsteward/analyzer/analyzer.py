"""
Script update analysis for sqlsteward.

Compares the scripts that were executed on a database with the scripts that
are currently available and decides which scripts were added, updated,
deleted or renamed. Every update is classified as regular, meaning it can be
applied incrementally, or irregular, meaning the database has to be rebuilt
from scratch.
"""

import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..script.model import ExecutedScript, Script, ScriptKind, script_sort_key
from .updates import (
    Diagnostic,
    DiagnosticLevel,
    ScriptUpdate,
    ScriptUpdates,
    ScriptUpdateType,
    sorted_updates,
)


logger = logging.getLogger(__name__)

ACKNOWLEDGED_CHANGE_MARKER = (
    "-- I have read and understand the implications of changing the incremental script"
)

AcknowledgedChangePredicate = Callable[[Script], bool]

_ADDED = {
    ScriptKind.REPEATABLE: ScriptUpdateType.REPEATABLE_SCRIPT_ADDED,
    ScriptKind.PREPROCESSING: ScriptUpdateType.PREPROCESSING_SCRIPT_ADDED,
    ScriptKind.POSTPROCESSING: ScriptUpdateType.POSTPROCESSING_SCRIPT_ADDED,
}
_UPDATED = {
    ScriptKind.INCREMENTAL: ScriptUpdateType.INDEXED_SCRIPT_UPDATED,
    ScriptKind.REPEATABLE: ScriptUpdateType.REPEATABLE_SCRIPT_UPDATED,
    ScriptKind.PREPROCESSING: ScriptUpdateType.PREPROCESSING_SCRIPT_UPDATED,
    ScriptKind.POSTPROCESSING: ScriptUpdateType.POSTPROCESSING_SCRIPT_UPDATED,
}
_DELETED = {
    ScriptKind.INCREMENTAL: ScriptUpdateType.INDEXED_SCRIPT_DELETED,
    ScriptKind.REPEATABLE: ScriptUpdateType.REPEATABLE_SCRIPT_DELETED,
    ScriptKind.PREPROCESSING: ScriptUpdateType.PREPROCESSING_SCRIPT_DELETED,
    ScriptKind.POSTPROCESSING: ScriptUpdateType.POSTPROCESSING_SCRIPT_DELETED,
}
_RENAMED = {
    ScriptKind.REPEATABLE: ScriptUpdateType.REPEATABLE_SCRIPT_RENAMED,
    ScriptKind.PREPROCESSING: ScriptUpdateType.PREPROCESSING_SCRIPT_RENAMED,
    ScriptKind.POSTPROCESSING: ScriptUpdateType.POSTPROCESSING_SCRIPT_RENAMED,
}
_FAILURE_RERUN = {
    ScriptKind.PREPROCESSING: ScriptUpdateType.PREPROCESSING_SCRIPT_FAILURE_RERUN,
    ScriptKind.POSTPROCESSING: ScriptUpdateType.POSTPROCESSING_SCRIPT_FAILURE_RERUN,
}


def content_starts_with(marker: str) -> AcknowledgedChangePredicate:
    """Accept a changed incremental script when its content starts with the marker."""

    def predicate(script: Script) -> bool:
        if script.content_handle is None:
            return False
        return script.content_handle.starts_with(marker)

    return predicate


def never_acknowledged(script: Script) -> bool:
    """Never accept changes to executed incremental scripts."""
    return False


class _Analysis:
    """Working state of a single analysis. Never shared between calls."""

    def __init__(self, scripts: Iterable[Script], executed_scripts: Iterable[ExecutedScript]):
        self.scripts = sorted(scripts, key=script_sort_key)
        self.executed_scripts = sorted(executed_scripts, key=lambda e: script_sort_key(e.script))

        self.scripts_by_name: Dict[str, Script] = {s.file_name: s for s in self.scripts}
        self.scripts_by_checksum: Dict[str, List[Script]] = defaultdict(list)
        self._checksums_indexed = False

        # Current scripts claimed by an executed script, by name or through a rename
        self.claimed: Set[str] = set()

        self.regularly_added_or_modified: List[ScriptUpdate] = []
        self.irregularly_updated: List[ScriptUpdate] = []
        self.regularly_deleted_repeatable: List[ScriptUpdate] = []
        self.regularly_added_patch: List[ScriptUpdate] = []
        self.regularly_updated_preprocessing: List[ScriptUpdate] = []
        self.regularly_updated_postprocessing: List[ScriptUpdate] = []
        self.regularly_renamed: List[ScriptUpdate] = []
        self.ignored: List[ScriptUpdate] = []
        self.diagnostics: List[Diagnostic] = []

    def scripts_with_checksum(self, checksum: str) -> List[Script]:
        # Built on first use, only renames need checksums of every script
        if not self._checksums_indexed:
            for script in self.scripts:
                self.scripts_by_checksum[script.checksum].append(script)
            self._checksums_indexed = True
        return self.scripts_by_checksum.get(checksum, [])

    def diagnose(self, level: DiagnosticLevel, message: str, file_name: Optional[str] = None) -> None:
        self.diagnostics.append(Diagnostic(level, message, file_name))

    def register_kind_specific(self, update: ScriptUpdate) -> None:
        """Register an update in the collection of its script kind, for non-incremental kinds."""
        kind = update.script.kind
        if kind == ScriptKind.PREPROCESSING:
            self.regularly_updated_preprocessing.append(update)
        elif kind == ScriptKind.POSTPROCESSING:
            self.regularly_updated_postprocessing.append(update)
        elif update.update_type == ScriptUpdateType.REPEATABLE_SCRIPT_DELETED:
            self.regularly_deleted_repeatable.append(update)
        elif update.update_type == ScriptUpdateType.REPEATABLE_SCRIPT_RENAMED:
            self.regularly_renamed.append(update)
        else:
            self.regularly_added_or_modified.append(update)

    def result(self) -> ScriptUpdates:
        return ScriptUpdates(
            regularly_added_or_modified=sorted_updates(self.regularly_added_or_modified),
            irregularly_updated=sorted_updates(self.irregularly_updated),
            regularly_deleted_repeatable=sorted_updates(self.regularly_deleted_repeatable),
            regularly_added_patch=sorted_updates(self.regularly_added_patch),
            regularly_updated_preprocessing=sorted_updates(self.regularly_updated_preprocessing),
            regularly_updated_postprocessing=sorted_updates(self.regularly_updated_postprocessing),
            regularly_renamed=sorted_updates(self.regularly_renamed),
            ignored=sorted_updates(self.ignored),
            diagnostics=tuple(self.diagnostics),
        )


class ScriptUpdatesAnalyzer:
    """
    Classifies the differences between current scripts and executed scripts.

    The analyzer only holds policy settings. Each call to analyze works on its
    own state, so one instance can serve concurrent update runs.
    """

    def __init__(
        self,
        use_last_modified_dates: bool = True,
        allow_out_of_sequence_patches: bool = False,
        ignore_deletions: bool = False,
        acknowledged_change: Optional[AcknowledgedChangePredicate] = None,
    ):
        self.use_last_modified_dates = use_last_modified_dates
        self.allow_out_of_sequence_patches = allow_out_of_sequence_patches
        self.ignore_deletions = ignore_deletions
        if acknowledged_change is None:
            acknowledged_change = content_starts_with(ACKNOWLEDGED_CHANGE_MARKER)
        self.acknowledged_change = acknowledged_change

    def analyze(
        self,
        scripts: Iterable[Script],
        executed_scripts: Iterable[ExecutedScript],
    ) -> ScriptUpdates:
        """Compare the current scripts with the executed scripts and classify every difference."""
        analysis = _Analysis(scripts, executed_scripts)

        unmatched = self._match_by_name(analysis)
        if unmatched:
            self._resolve_unmatched(analysis, unmatched)
        self._register_additions(analysis)

        updates = analysis.result()
        logger.debug(
            f"Analyzed {len(analysis.scripts)} scripts against {len(analysis.executed_scripts)} "
            f"executed scripts: {len(updates)} updates, {len(updates.irregularly_updated)} irregular"
        )
        return updates

    def _match_by_name(self, analysis: _Analysis) -> List[ExecutedScript]:
        unmatched = []
        for executed in analysis.executed_scripts:
            current = analysis.scripts_by_name.get(executed.file_name)
            if current is None:
                unmatched.append(executed)
                continue

            analysis.claimed.add(current.file_name)
            old = executed.script

            if not old.is_content_equal_to(current, self.use_last_modified_dates):
                if old.is_incremental and current.is_incremental and self.acknowledged_change(current):
                    analysis.diagnose(
                        DiagnosticLevel.WARNING,
                        f"Contents of executed script {current.file_name} changed, the change "
                        f"was acknowledged and is registered without rebuilding the database",
                        current.file_name,
                    )
                    self._register_rename(analysis, executed, current)
                else:
                    self._register_content_update(analysis, current)
            elif executed.failed and current.kind in _FAILURE_RERUN:
                analysis.register_kind_specific(
                    ScriptUpdate(_FAILURE_RERUN[current.kind], current)
                )
        return unmatched

    def _resolve_unmatched(self, analysis: _Analysis, unmatched: List[ExecutedScript]) -> None:
        for executed in unmatched:
            old = executed.script
            candidates = [
                script for script in analysis.scripts_with_checksum(old.checksum)
                if script.file_name not in analysis.claimed
            ]

            if len(candidates) == 1 and candidates[0].kind == old.kind:
                analysis.claimed.add(candidates[0].file_name)
                self._register_rename(analysis, executed, candidates[0])
                continue

            if len(candidates) > 1:
                analysis.diagnose(
                    DiagnosticLevel.WARNING,
                    f"Script {old.file_name} has the same content as {len(candidates)} new scripts "
                    f"({', '.join(c.file_name for c in candidates)}), it is not treated as renamed",
                    old.file_name,
                )
            elif len(candidates) == 1:
                analysis.diagnose(
                    DiagnosticLevel.INFO,
                    f"Script {old.file_name} has the same content as {candidates[0].file_name} "
                    f"but changed from {old.kind.value} to {candidates[0].kind.value}, "
                    f"it is not treated as renamed",
                    old.file_name,
                )
            self._register_deletion(analysis, old)

    def _register_additions(self, analysis: _Analysis) -> None:
        highest = self._highest_executed_indexed_script(analysis.executed_scripts)
        for script in analysis.scripts:
            if script.file_name in analysis.claimed:
                continue

            if not script.is_incremental:
                analysis.register_kind_specific(ScriptUpdate(_ADDED[script.kind], script))
            elif highest is None or script.indexes > highest.indexes:
                analysis.regularly_added_or_modified.append(
                    ScriptUpdate(ScriptUpdateType.HIGHER_INDEX_SCRIPT_ADDED, script)
                )
            elif script.is_patch and self.allow_out_of_sequence_patches:
                analysis.regularly_added_patch.append(
                    ScriptUpdate(ScriptUpdateType.LOWER_INDEX_PATCH_SCRIPT_ADDED, script)
                )
            elif script.is_patch:
                analysis.irregularly_updated.append(
                    ScriptUpdate(ScriptUpdateType.LOWER_INDEX_PATCH_SCRIPT_ADDED, script)
                )
            else:
                analysis.irregularly_updated.append(
                    ScriptUpdate(ScriptUpdateType.LOWER_INDEX_NON_PATCH_SCRIPT_ADDED, script)
                )

    def _register_content_update(self, analysis: _Analysis, script: Script) -> None:
        update = ScriptUpdate(_UPDATED[script.kind], script)
        if script.is_incremental:
            analysis.irregularly_updated.append(update)
        else:
            analysis.register_kind_specific(update)

    def _register_rename(self, analysis: _Analysis, executed: ExecutedScript, renamed_to: Script) -> None:
        old = executed.script
        if not old.is_incremental:
            analysis.register_kind_specific(ScriptUpdate(_RENAMED[old.kind], old, renamed_to))
            return

        if old.indexes == renamed_to.indexes:
            analysis.regularly_renamed.append(
                ScriptUpdate(ScriptUpdateType.INDEXED_SCRIPT_RENAMED, old, renamed_to)
            )
            return

        analysis.diagnose(
            DiagnosticLevel.ERROR,
            f"Script {old.file_name} (new name: {renamed_to.file_name}) changed index: "
            f"{old.indexes} vs {renamed_to.indexes}",
            old.file_name,
        )
        analysis.irregularly_updated.append(
            ScriptUpdate(ScriptUpdateType.INDEXED_SCRIPT_RENAMED_SCRIPT_SEQUENCE_CHANGED, old, renamed_to)
        )

    def _register_deletion(self, analysis: _Analysis, script: Script) -> None:
        update = ScriptUpdate(_DELETED[script.kind], script)
        if self.ignore_deletions:
            analysis.ignored.append(update)
        elif script.is_incremental:
            analysis.irregularly_updated.append(update)
        else:
            analysis.register_kind_specific(update)

    @staticmethod
    def _highest_executed_indexed_script(executed_scripts: Iterable[ExecutedScript]) -> Optional[Script]:
        highest = None
        for executed in executed_scripts:
            script = executed.script
            if script.is_incremental and (highest is None or script.indexes > highest.indexes):
                highest = script
        return highest
