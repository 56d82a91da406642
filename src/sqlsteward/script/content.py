"""
Lazy accessors for script content.

Scripts are read only when their content or checksum is actually needed,
so a repository scan stays cheap when last modification dates can be trusted.
"""

import hashlib
import zipfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import cached_property
from pathlib import Path
from typing import Optional


class ScriptContentHandle(ABC):
    """Gives access to the content of a single script."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    @abstractmethod
    def read_bytes(self) -> bytes:
        """Read the raw script content."""

    @property
    @abstractmethod
    def last_modified(self) -> Optional[int]:
        """Last modification time in epoch milliseconds, if known."""

    def read_text(self) -> str:
        """Read the script content decoded with the configured encoding."""
        return self.read_bytes().decode(self.encoding)

    def starts_with(self, prefix: str) -> bool:
        """Check whether the raw content starts with the encoded prefix, without decoding it."""
        return self.read_bytes().startswith(prefix.encode(self.encoding))

    @cached_property
    def checksum(self) -> str:
        """MD5 hex digest of the raw content."""
        return hashlib.md5(self.read_bytes()).hexdigest()


class FileContentHandle(ScriptContentHandle):
    """Content of a script stored as a plain file."""

    def __init__(self, path: Path, encoding: str = "utf-8"):
        super().__init__(encoding)
        self.path = Path(path)

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    @cached_property
    def last_modified(self) -> Optional[int]:
        return int(self.path.stat().st_mtime * 1000)

    def __repr__(self) -> str:
        return f"FileContentHandle({str(self.path)!r})"


class ArchiveContentHandle(ScriptContentHandle):
    """Content of a script stored as a member of a zip or jar archive."""

    def __init__(self, archive_path: Path, member: zipfile.ZipInfo, encoding: str = "utf-8"):
        super().__init__(encoding)
        self.archive_path = Path(archive_path)
        self.member = member

    def read_bytes(self) -> bytes:
        with zipfile.ZipFile(self.archive_path) as archive:
            return archive.read(self.member.filename)

    @property
    def last_modified(self) -> Optional[int]:
        # Archive members keep their own timestamp, the archive mtime changes on every build
        # Zip times carry no zone and are read as UTC
        return int(datetime(*self.member.date_time, tzinfo=timezone.utc).timestamp() * 1000)

    def __repr__(self) -> str:
        return f"ArchiveContentHandle({str(self.archive_path)!r}, {self.member.filename!r})"


class StringContentHandle(ScriptContentHandle):
    """Script content held in memory."""

    def __init__(self, content: str, encoding: str = "utf-8", last_modified: Optional[int] = None):
        super().__init__(encoding)
        self.content = content
        self._last_modified = last_modified

    def read_bytes(self) -> bytes:
        return self.content.encode(self.encoding)

    @property
    def last_modified(self) -> Optional[int]:
        return self._last_modified
