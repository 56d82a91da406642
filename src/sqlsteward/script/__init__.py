"""
Script handling package for sqlsteward.

This package provides:
- The script data model and its ordering
- Lazy content accessors with checksums
- The repository scanning script locations
"""

from .content import ScriptContentHandle, FileContentHandle, ArchiveContentHandle, StringContentHandle
from .model import Script, ScriptKind, ScriptIndexes, ExecutedScript, script_sort_key, sorted_scripts
from .repository import ScriptRepository, ScriptNamingSettings, parse_script_path

__all__ = [
    "ScriptContentHandle",
    "FileContentHandle",
    "ArchiveContentHandle",
    "StringContentHandle",
    "Script",
    "ScriptKind",
    "ScriptIndexes",
    "ExecutedScript",
    "script_sort_key",
    "sorted_scripts",
    "ScriptRepository",
    "ScriptNamingSettings",
    "parse_script_path",
]
