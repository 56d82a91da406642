"""
Script repository for sqlsteward.

Scans script locations (directories or zip/jar archives) and turns every
script file into a Script with its kind, indexes and qualifiers.
"""

import logging
import re
import zipfile
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..exceptions import (
    DuplicateScriptError,
    DuplicateScriptIndexError,
    InvalidScriptNameError,
    ScriptRepositoryError,
)
from .content import ArchiveContentHandle, FileContentHandle, ScriptContentHandle
from .model import Script, ScriptIndexes, ScriptKind, sorted_scripts


logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (".zip", ".jar")

_INDEX_PATTERN = re.compile(r"^(\d+)_")


@dataclass
class ScriptNamingSettings:
    """How script names and locations are interpreted."""

    extensions: Sequence[str] = ("sql", "ddl", "sh", "psql")
    qualifiers: Sequence[str] = ()
    patch_qualifier: str = "patch"
    preprocessing_dir: Optional[str] = "preprocessing"
    postprocessing_dir: Optional[str] = "postprocessing"
    encoding: str = "utf-8"

    def __post_init__(self):
        self.extensions = tuple(ext.lower().lstrip(".") for ext in self.extensions)
        self.qualifiers = tuple(q.lower() for q in self.qualifiers)
        self.patch_qualifier = self.patch_qualifier.lower()

    @property
    def known_qualifiers(self) -> Tuple[str, ...]:
        return (self.patch_qualifier,) + tuple(self.qualifiers)


@dataclass
class ParsedScriptPath:
    """Information derived from the relative path of a script."""

    file_name: str
    kind: ScriptKind
    indexes: ScriptIndexes
    qualifiers: List[str] = field(default_factory=list)

    @property
    def is_patch(self) -> bool:
        return "patch" in self.qualifiers


def parse_script_path(relative_path: str, settings: ScriptNamingSettings) -> ParsedScriptPath:
    """
    Parse a script path relative to its location.

    Every path segment may start with a numeric index followed by an
    underscore, e.g. '01_tables/003_#patch_users.sql' gives indexes (1, 3) and
    the patch qualifier. A script is incremental only when its own file name
    carries an index.
    """
    path = PurePosixPath(relative_path)
    segments = path.parts
    if not segments:
        raise InvalidScriptNameError(relative_path, "empty path")

    directories = [segment.lower() for segment in segments[:-1]]
    if settings.preprocessing_dir and settings.preprocessing_dir.lower() in directories:
        kind = ScriptKind.PREPROCESSING
    elif settings.postprocessing_dir and settings.postprocessing_dir.lower() in directories:
        kind = ScriptKind.POSTPROCESSING
    else:
        kind = None

    indexes: List[int] = []
    for segment in segments[:-1]:
        match = _INDEX_PATTERN.match(segment)
        if match:
            indexes.append(int(match.group(1)))

    base_name = path.stem
    own_index = _INDEX_PATTERN.match(base_name)
    if own_index:
        indexes.append(int(own_index.group(1)))

    qualifiers = []
    for token in base_name.split("_"):
        if token.startswith("#"):
            qualifier = token[1:].lower()
            if qualifier not in settings.known_qualifiers:
                raise InvalidScriptNameError(relative_path, f"unknown qualifier '{qualifier}'")
            qualifiers.append(qualifier)

    if kind is None:
        kind = ScriptKind.INCREMENTAL if own_index else ScriptKind.REPEATABLE
    if kind == ScriptKind.REPEATABLE and settings.patch_qualifier in qualifiers:
        raise InvalidScriptNameError(relative_path, "only indexed scripts can be patch scripts")

    return ParsedScriptPath(
        file_name=path.as_posix(),
        kind=kind,
        indexes=ScriptIndexes(tuple(indexes)) if own_index else ScriptIndexes(),
        qualifiers=["patch" if q == settings.patch_qualifier else q for q in qualifiers],
    )


class ScriptRepository:
    """Exposes the current set of scripts found in the configured locations."""

    def __init__(
        self,
        locations: Sequence[Path],
        settings: Optional[ScriptNamingSettings] = None,
    ):
        self.locations = [Path(location) for location in locations]
        self.settings = settings or ScriptNamingSettings()
        self._scripts: Optional[Tuple[Script, ...]] = None

    def all_scripts(self) -> Tuple[Script, ...]:
        """All scripts, ordered by script_sort_key."""
        if self._scripts is None:
            self._scripts = self._load_scripts()
        return self._scripts

    def indexed_scripts(self) -> Tuple[Script, ...]:
        return tuple(s for s in self.all_scripts() if s.is_incremental)

    def repeatable_scripts(self) -> Tuple[Script, ...]:
        return tuple(s for s in self.all_scripts() if s.is_repeatable)

    def preprocessing_scripts(self) -> Tuple[Script, ...]:
        return tuple(s for s in self.all_scripts() if s.is_preprocessing)

    def postprocessing_scripts(self) -> Tuple[Script, ...]:
        return tuple(s for s in self.all_scripts() if s.is_postprocessing)

    def _load_scripts(self) -> Tuple[Script, ...]:
        found: Dict[str, Script] = {}
        origins: Dict[str, str] = {}

        for location in self.locations:
            count = 0
            for relative_path, handle in self._iter_location(location):
                parsed = parse_script_path(relative_path, self.settings)
                if parsed.file_name in found:
                    raise DuplicateScriptError(
                        parsed.file_name, [origins[parsed.file_name], str(location)]
                    )
                found[parsed.file_name] = Script(
                    parsed.file_name,
                    kind=parsed.kind,
                    indexes=parsed.indexes,
                    is_patch=parsed.is_patch,
                    content_handle=handle,
                )
                origins[parsed.file_name] = str(location)
                count += 1
            logger.info(f"Found {count} scripts in {location}")

        scripts = sorted_scripts(found.values())
        self._check_unique_indexes(scripts)
        return scripts

    def _check_unique_indexes(self, scripts: Iterable[Script]) -> None:
        by_indexes: Dict[ScriptIndexes, List[str]] = defaultdict(list)
        for script in scripts:
            if script.is_incremental:
                by_indexes[script.indexes].append(script.file_name)
        for indexes, file_names in by_indexes.items():
            if len(file_names) > 1:
                raise DuplicateScriptIndexError(indexes.indexes_string, file_names)

    def _iter_location(self, location: Path) -> Iterator[Tuple[str, ScriptContentHandle]]:
        if not location.exists():
            raise ScriptRepositoryError(f"Script location {location} does not exist")

        if location.is_file():
            if location.suffix.lower() not in ARCHIVE_SUFFIXES:
                raise ScriptRepositoryError(
                    f"Script location {location} is neither a directory nor a zip/jar archive"
                )
            yield from self._iter_archive(location)
            return

        for path in sorted(location.rglob("*")):
            if path.is_file() and self._is_script(path.name):
                relative = path.relative_to(location).as_posix()
                yield relative, FileContentHandle(path, self.settings.encoding)

    def _iter_archive(self, archive_path: Path) -> Iterator[Tuple[str, ScriptContentHandle]]:
        try:
            with zipfile.ZipFile(archive_path) as archive:
                members = [m for m in archive.infolist() if not m.is_dir()]
        except zipfile.BadZipFile as e:
            raise ScriptRepositoryError(f"Invalid script archive {archive_path}: {e}") from e

        for member in sorted(members, key=lambda m: m.filename):
            if self._is_script(PurePosixPath(member.filename).name):
                yield member.filename, ArchiveContentHandle(archive_path, member, self.settings.encoding)

    def _is_script(self, name: str) -> bool:
        _, dot, extension = name.rpartition(".")
        return bool(dot) and extension.lower() in self.settings.extensions
