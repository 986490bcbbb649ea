"""
Credential blob storage.

The blob format is owned by the protocol engine; nothing here looks
inside it. One blob per process (single-session bridge).
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from constants import CREDENTIALS_FILENAME


class FileSessionStore:
    """
    Stores the credential blob as a single file inside session_dir.

    Writes go through a temp file + rename so a crash mid-write never
    leaves a truncated blob behind.
    """

    def __init__(self, session_dir: str | Path) -> None:
        self._dir = Path(session_dir)
        self._path = self._dir / CREDENTIALS_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> bytes | None:
        try:
            blob = self._path.read_bytes()
        except FileNotFoundError:
            return None
        return blob or None

    def save(self, blob: bytes) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".creds-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(blob)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)


class MemorySessionStore:
    """In-process store for tests and throwaway runs."""

    def __init__(self, blob: bytes | None = None) -> None:
        self._blob = blob
        self.saves = 0
        self.clears = 0

    def load(self) -> bytes | None:
        return self._blob

    def save(self, blob: bytes) -> None:
        self._blob = blob
        self.saves += 1

    def clear(self) -> None:
        self._blob = None
        self.clears += 1
