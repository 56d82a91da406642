"""
sqlsteward: keeps PostgreSQL databases in sync with a folder of versioned scripts.

sqlsteward compares the scripts on disk with the scripts already executed on
a database, classifies every change as regular or irregular, and applies the
regular ones incrementally or rebuilds the database from scratch.
"""

__version__ = "0.1.0"
__author__ = "sqlsteward Contributors"

from .config import StewardConfig
from .exceptions import StewardError, ConfigurationError, DatabaseError, ScriptError, UpdateError

__all__ = [
    "__version__",
    "StewardConfig",
    "StewardError",
    "ConfigurationError",
    "DatabaseError",
    "ScriptError",
    "UpdateError",
]
