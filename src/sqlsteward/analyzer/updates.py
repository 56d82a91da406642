"""
Script update data model for sqlsteward.

A ScriptUpdate is one classified difference between the scripts on disk and
the scripts executed on the database. ScriptUpdates groups all differences
found during one analysis into disjoint, ordered collections.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple

from ..script.model import Script, script_sort_key


class ScriptUpdateType(str, Enum):
    """Types of script updates."""

    HIGHER_INDEX_SCRIPT_ADDED = "higher_index_script_added"
    LOWER_INDEX_PATCH_SCRIPT_ADDED = "lower_index_patch_script_added"
    LOWER_INDEX_NON_PATCH_SCRIPT_ADDED = "lower_index_non_patch_script_added"
    INDEXED_SCRIPT_UPDATED = "indexed_script_updated"
    INDEXED_SCRIPT_RENAMED = "indexed_script_renamed"
    INDEXED_SCRIPT_RENAMED_SCRIPT_SEQUENCE_CHANGED = "indexed_script_renamed_script_sequence_changed"
    INDEXED_SCRIPT_DELETED = "indexed_script_deleted"

    REPEATABLE_SCRIPT_ADDED = "repeatable_script_added"
    REPEATABLE_SCRIPT_UPDATED = "repeatable_script_updated"
    REPEATABLE_SCRIPT_DELETED = "repeatable_script_deleted"
    REPEATABLE_SCRIPT_RENAMED = "repeatable_script_renamed"

    PREPROCESSING_SCRIPT_ADDED = "preprocessing_script_added"
    PREPROCESSING_SCRIPT_UPDATED = "preprocessing_script_updated"
    PREPROCESSING_SCRIPT_DELETED = "preprocessing_script_deleted"
    PREPROCESSING_SCRIPT_RENAMED = "preprocessing_script_renamed"
    PREPROCESSING_SCRIPT_FAILURE_RERUN = "preprocessing_script_failure_rerun"

    POSTPROCESSING_SCRIPT_ADDED = "postprocessing_script_added"
    POSTPROCESSING_SCRIPT_UPDATED = "postprocessing_script_updated"
    POSTPROCESSING_SCRIPT_DELETED = "postprocessing_script_deleted"
    POSTPROCESSING_SCRIPT_RENAMED = "postprocessing_script_renamed"
    POSTPROCESSING_SCRIPT_FAILURE_RERUN = "postprocessing_script_failure_rerun"

    @property
    def is_deletion(self) -> bool:
        return self.value.endswith("_deleted")

    @property
    def is_rename(self) -> bool:
        return "_renamed" in self.value

    @property
    def description_template(self) -> str:
        return _DESCRIPTIONS[self]

    def describe(self, script: Script, renamed_to: Optional[Script] = None) -> str:
        """Human readable description of an update of this type."""
        return self.description_template.format(
            script=script.file_name,
            renamed_to=renamed_to.file_name if renamed_to else "",
        )


_DESCRIPTIONS = {
    ScriptUpdateType.HIGHER_INDEX_SCRIPT_ADDED: "newly added script: {script}",
    ScriptUpdateType.LOWER_INDEX_PATCH_SCRIPT_ADDED:
        "newly added patch script with a lower index than an already executed script: {script}",
    ScriptUpdateType.LOWER_INDEX_NON_PATCH_SCRIPT_ADDED:
        "newly added script with a lower index than an already executed script: {script}",
    ScriptUpdateType.INDEXED_SCRIPT_UPDATED: "contents of indexed script {script} have changed",
    ScriptUpdateType.INDEXED_SCRIPT_RENAMED: "indexed script {script} renamed to {renamed_to}",
    ScriptUpdateType.INDEXED_SCRIPT_RENAMED_SCRIPT_SEQUENCE_CHANGED:
        "indexed script {script} renamed to {renamed_to}, which changes the sequence of the scripts",
    ScriptUpdateType.INDEXED_SCRIPT_DELETED: "indexed script {script} was deleted",
    ScriptUpdateType.REPEATABLE_SCRIPT_ADDED: "newly added repeatable script: {script}",
    ScriptUpdateType.REPEATABLE_SCRIPT_UPDATED: "contents of repeatable script {script} have changed",
    ScriptUpdateType.REPEATABLE_SCRIPT_DELETED: "repeatable script {script} was deleted",
    ScriptUpdateType.REPEATABLE_SCRIPT_RENAMED: "repeatable script {script} renamed to {renamed_to}",
    ScriptUpdateType.PREPROCESSING_SCRIPT_ADDED: "newly added preprocessing script: {script}",
    ScriptUpdateType.PREPROCESSING_SCRIPT_UPDATED: "contents of preprocessing script {script} have changed",
    ScriptUpdateType.PREPROCESSING_SCRIPT_DELETED: "preprocessing script {script} was deleted",
    ScriptUpdateType.PREPROCESSING_SCRIPT_RENAMED: "preprocessing script {script} renamed to {renamed_to}",
    ScriptUpdateType.PREPROCESSING_SCRIPT_FAILURE_RERUN:
        "preprocessing script {script} failed during the last update and is executed again",
    ScriptUpdateType.POSTPROCESSING_SCRIPT_ADDED: "newly added postprocessing script: {script}",
    ScriptUpdateType.POSTPROCESSING_SCRIPT_UPDATED: "contents of postprocessing script {script} have changed",
    ScriptUpdateType.POSTPROCESSING_SCRIPT_DELETED: "postprocessing script {script} was deleted",
    ScriptUpdateType.POSTPROCESSING_SCRIPT_RENAMED: "postprocessing script {script} renamed to {renamed_to}",
    ScriptUpdateType.POSTPROCESSING_SCRIPT_FAILURE_RERUN:
        "postprocessing script {script} failed during the last update and is executed again",
}

_TYPE_ORDER = {update_type: position for position, update_type in enumerate(ScriptUpdateType)}


@dataclass(frozen=True)
class ScriptUpdate:
    """A single classified difference. Renames carry both the old and the new script."""

    update_type: ScriptUpdateType
    script: Script
    renamed_to: Optional[Script] = None

    @property
    def description(self) -> str:
        return self.update_type.describe(self.script, self.renamed_to)

    @property
    def target_script(self) -> Script:
        """The script as it currently exists: the new script for renames."""
        return self.renamed_to or self.script

    def sort_key(self) -> Tuple:
        renamed_key = script_sort_key(self.renamed_to) if self.renamed_to else ()
        return (script_sort_key(self.script), _TYPE_ORDER[self.update_type], renamed_key)

    def __str__(self) -> str:
        return self.description


def sorted_updates(updates: Iterable[ScriptUpdate]) -> Tuple[ScriptUpdate, ...]:
    """Return the updates as a tuple ordered by their underlying script."""
    return tuple(sorted(updates, key=ScriptUpdate.sort_key))


class DiagnosticLevel(str, Enum):
    """Severity of an analysis diagnostic."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Diagnostic:
    """Advisory message produced while analyzing script updates."""

    level: DiagnosticLevel
    message: str
    file_name: Optional[str] = None


@dataclass(frozen=True)
class ScriptUpdates:
    """All script updates found during one analysis, in disjoint ordered collections."""

    regularly_added_or_modified: Tuple[ScriptUpdate, ...] = ()
    irregularly_updated: Tuple[ScriptUpdate, ...] = ()
    regularly_deleted_repeatable: Tuple[ScriptUpdate, ...] = ()
    regularly_added_patch: Tuple[ScriptUpdate, ...] = ()
    regularly_updated_preprocessing: Tuple[ScriptUpdate, ...] = ()
    regularly_updated_postprocessing: Tuple[ScriptUpdate, ...] = ()
    regularly_renamed: Tuple[ScriptUpdate, ...] = ()
    ignored: Tuple[ScriptUpdate, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = field(default=(), compare=False)

    @property
    def collections(self) -> Tuple[Tuple[ScriptUpdate, ...], ...]:
        return (
            self.regularly_added_or_modified,
            self.irregularly_updated,
            self.regularly_deleted_repeatable,
            self.regularly_added_patch,
            self.regularly_updated_preprocessing,
            self.regularly_updated_postprocessing,
            self.regularly_renamed,
            self.ignored,
        )

    @property
    def is_empty(self) -> bool:
        """True when no script update of any kind was found."""
        return not any(self.collections)

    @property
    def has_irregular_updates(self) -> bool:
        return bool(self.irregularly_updated)

    @property
    def has_updates_other_than_renames_and_ignored(self) -> bool:
        """True when executing scripts is needed, as opposed to only updating the history."""
        return bool(
            self.regularly_added_or_modified
            or self.irregularly_updated
            or self.regularly_deleted_repeatable
            or self.regularly_added_patch
            or self.regularly_updated_preprocessing
            or self.regularly_updated_postprocessing
        )

    def regular_updates(self) -> Tuple[ScriptUpdate, ...]:
        """All regular updates, merged in execution order."""
        preprocessing = self.regularly_updated_preprocessing
        postprocessing = self.regularly_updated_postprocessing
        middle = sorted_updates(
            self.regularly_added_or_modified
            + self.regularly_added_patch
            + self.regularly_renamed
            + self.regularly_deleted_repeatable
        )
        return preprocessing + middle + postprocessing

    def scripts_to_execute(self) -> Tuple[Script, ...]:
        """
        Scripts to run during an incremental update, in execution order.

        Preprocessing scripts run first, then the added or modified incremental
        and repeatable scripts together with the regularly added patch scripts
        in script order, and postprocessing scripts last.
        """
        preprocessing = [u.target_script for u in self.regularly_updated_preprocessing
                         if not u.update_type.is_deletion and not u.update_type.is_rename]
        middle = [u.script for u in sorted_updates(self.regularly_added_or_modified + self.regularly_added_patch)]
        postprocessing = [u.target_script for u in self.regularly_updated_postprocessing
                          if not u.update_type.is_deletion and not u.update_type.is_rename]
        return tuple(preprocessing + middle + postprocessing)

    def execution_order(self, all_scripts: Iterable[Script]) -> Tuple[Script, ...]:
        """
        Scripts to run, including the pre- and postprocessing scripts that run unconditionally.

        Whenever other scripts are executed, every preprocessing script of the
        repository runs before them and every postprocessing script after them.
        Otherwise only the changed or previously failed ones are run.
        """
        to_execute = self.scripts_to_execute()
        middle = tuple(s for s in to_execute if not (s.is_preprocessing or s.is_postprocessing))
        if not middle:
            return to_execute

        preprocessing, postprocessing = self.always_executed(all_scripts)
        return preprocessing + middle + postprocessing

    @staticmethod
    def always_executed(all_scripts: Iterable[Script]) -> Tuple[Tuple[Script, ...], Tuple[Script, ...]]:
        """Preprocessing and postprocessing scripts, run before and after any other script."""
        ordered = sorted(all_scripts, key=script_sort_key)
        return (
            tuple(s for s in ordered if s.is_preprocessing),
            tuple(s for s in ordered if s.is_postprocessing),
        )

    def all_updates(self) -> Tuple[ScriptUpdate, ...]:
        """Every update of every collection, irregular ones included."""
        updates: Tuple[ScriptUpdate, ...] = ()
        for collection in self.collections:
            updates += collection
        return sorted_updates(updates)

    def __len__(self) -> int:
        return sum(len(collection) for collection in self.collections)
