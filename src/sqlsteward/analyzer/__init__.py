"""
Script update analysis package for sqlsteward.

This package provides:
- Classification of script changes into regular and irregular updates
- The script update report consumed by the database maintainer
"""

from .analyzer import (
    ScriptUpdatesAnalyzer,
    ACKNOWLEDGED_CHANGE_MARKER,
    content_starts_with,
    never_acknowledged,
)
from .updates import (
    ScriptUpdate,
    ScriptUpdateType,
    ScriptUpdates,
    Diagnostic,
    DiagnosticLevel,
    sorted_updates,
)

__all__ = [
    "ScriptUpdatesAnalyzer",
    "ACKNOWLEDGED_CHANGE_MARKER",
    "content_starts_with",
    "never_acknowledged",
    "ScriptUpdate",
    "ScriptUpdateType",
    "ScriptUpdates",
    "Diagnostic",
    "DiagnosticLevel",
    "sorted_updates",
]
