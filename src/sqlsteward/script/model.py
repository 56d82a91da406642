"""
Script data model for sqlsteward.

Defines scripts as found in the script locations, their ordering and the
snapshots of scripts that were executed on a database.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .content import ScriptContentHandle, StringContentHandle


class ScriptKind(str, Enum):
    """Kinds of scripts."""

    INCREMENTAL = "incremental"
    REPEATABLE = "repeatable"
    PREPROCESSING = "preprocessing"
    POSTPROCESSING = "postprocessing"

    @property
    def order_value(self) -> int:
        """Get numeric order value for sorting."""
        order = {
            "preprocessing": 1,
            "incremental": 2,
            "repeatable": 3,
            "postprocessing": 4,
        }
        return order[self.value]


@dataclass(frozen=True, order=True)
class ScriptIndexes:
    """Ordered sequence of indexes parsed from the path of an incremental script."""

    values: Tuple[int, ...] = ()

    @classmethod
    def parse(cls, indexes_string: Optional[str]) -> "ScriptIndexes":
        """Parse indexes stored as a dot separated string, e.g. '1.2.10'."""
        if not indexes_string:
            return cls()
        return cls(tuple(int(part) for part in indexes_string.split(".")))

    @property
    def indexes_string(self) -> str:
        """Dot separated representation, as stored in the executed scripts table."""
        return ".".join(str(value) for value in self.values)

    def __bool__(self) -> bool:
        return bool(self.values)

    def __str__(self) -> str:
        return self.indexes_string or "<none>"


NO_INDEXES = ScriptIndexes()


class Script:
    """
    A script found in one of the script locations.

    The file name identifies the script. The checksum is read lazily from the
    content handle unless it was given explicitly, e.g. for a script snapshot
    loaded from the executed scripts table.
    """

    def __init__(
        self,
        file_name: str,
        kind: ScriptKind = ScriptKind.INCREMENTAL,
        indexes: ScriptIndexes = NO_INDEXES,
        is_patch: bool = False,
        checksum: Optional[str] = None,
        last_modified: Optional[int] = None,
        content_handle: Optional[ScriptContentHandle] = None,
    ):
        if checksum is None and content_handle is None:
            raise ValueError(f"Script {file_name} needs a checksum or a content handle")
        self.file_name = file_name
        self.kind = ScriptKind(kind)
        self.indexes = indexes
        self.is_patch = is_patch
        self.content_handle = content_handle
        self._checksum = checksum
        self._last_modified = last_modified

    @classmethod
    def from_content(
        cls,
        file_name: str,
        content: str,
        kind: ScriptKind = ScriptKind.INCREMENTAL,
        indexes: ScriptIndexes = NO_INDEXES,
        is_patch: bool = False,
        last_modified: Optional[int] = None,
    ) -> "Script":
        """Create a script whose content is held in memory."""
        return cls(
            file_name,
            kind=kind,
            indexes=indexes,
            is_patch=is_patch,
            content_handle=StringContentHandle(content, last_modified=last_modified),
        )

    @property
    def checksum(self) -> str:
        if self._checksum is None:
            self._checksum = self.content_handle.checksum
        return self._checksum

    @property
    def last_modified(self) -> Optional[int]:
        if self._last_modified is None and self.content_handle is not None:
            return self.content_handle.last_modified
        return self._last_modified

    @property
    def is_incremental(self) -> bool:
        return self.kind == ScriptKind.INCREMENTAL

    @property
    def is_repeatable(self) -> bool:
        return self.kind == ScriptKind.REPEATABLE

    @property
    def is_preprocessing(self) -> bool:
        return self.kind == ScriptKind.PREPROCESSING

    @property
    def is_postprocessing(self) -> bool:
        return self.kind == ScriptKind.POSTPROCESSING

    @property
    def extension(self) -> str:
        """File extension without the leading dot, lower case."""
        _, _, extension = self.file_name.rpartition(".")
        return extension.lower() if "." in self.file_name else ""

    def is_content_equal_to(self, other: "Script", use_last_modified: bool) -> bool:
        """
        Check whether this script has the same content as the other one.

        When use_last_modified is set and both scripts carry the same last
        modification date, the content is considered unchanged without
        calculating any checksum.
        """
        if use_last_modified:
            this_modified = self.last_modified
            if this_modified is not None and this_modified == other.last_modified:
                return True
        return self.checksum == other.checksum

    def read_content(self) -> str:
        """Read the full script content."""
        if self.content_handle is None:
            raise ValueError(f"Content of script {self.file_name} is not available")
        return self.content_handle.read_text()

    def _identity(self) -> Tuple:
        return (self.file_name, self.kind, self.indexes, self.is_patch)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Script):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    def __repr__(self) -> str:
        return f"Script({self.file_name!r}, kind={self.kind.value}, indexes={self.indexes})"

    def __str__(self) -> str:
        return self.file_name


def script_sort_key(script: Script) -> Tuple:
    """
    Sort key giving a strict total order over scripts.

    Indexed scripts come first in index order, then scripts are ordered by
    kind and finally by file name.
    """
    return (
        0 if script.indexes else 1,
        script.indexes.values,
        script.kind.order_value,
        script.file_name,
    )


def sorted_scripts(scripts) -> Tuple[Script, ...]:
    """Return the scripts as a tuple ordered by script_sort_key."""
    return tuple(sorted(scripts, key=script_sort_key))


@dataclass(frozen=True)
class ExecutedScript:
    """A script as it was when it was executed on the database."""

    script: Script
    executed_at: Optional[datetime] = None
    succeeded: bool = True

    @property
    def file_name(self) -> str:
        return self.script.file_name

    @property
    def failed(self) -> bool:
        return not self.succeeded

    def with_outcome(self, succeeded: bool, executed_at: Optional[datetime] = None) -> "ExecutedScript":
        """Copy of this record with a different execution outcome."""
        return ExecutedScript(
            script=self.script,
            executed_at=executed_at or self.executed_at,
            succeeded=succeeded,
        )
