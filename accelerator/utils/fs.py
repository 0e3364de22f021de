"""Target repository filesystem abstraction.

The engine never touches the filesystem directly: every read and write of the
target repository (and of the template source) goes through a
:class:`TargetFileSystem`. :class:`LocalFileSystem` works on disk with atomic
writes; :class:`MemoryFileSystem` keeps everything in a dict for tests.

Paths handed to these classes are POSIX-style and relative to the root.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

from accelerator.exceptions import EntryIOError

logger = logging.getLogger(__name__)


class TargetFileSystem(ABC):
    """Minimal file access surface the engine needs."""

    @abstractmethod
    def read_bytes(self, path: str) -> bytes | None:
        """Return the file content, or ``None`` if the file does not exist."""

    @abstractmethod
    def write_bytes(self, path: str, data: bytes) -> None:
        """Replace the file content atomically, creating parent directories."""

    def exists(self, path: str) -> bool:
        return self.read_bytes(path) is not None

    @abstractmethod
    def describe(self, path: str = "") -> str:
        """Human-readable location of ``path`` for messages."""


class LocalFileSystem(TargetFileSystem):
    """Disk-backed filesystem rooted at a directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def resolve(self, path: str) -> Path:
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts:
            raise EntryIOError(f"Path escapes the root: {path}", context={"path": path})
        return self.root.joinpath(*rel.parts)

    def read_bytes(self, path: str) -> bytes | None:
        full = self.resolve(path)
        try:
            return full.read_bytes()
        except FileNotFoundError:
            return None
        except IsADirectoryError:
            raise EntryIOError(f"Expected a file but found a directory: {full}", context={"path": path}) from None
        except OSError as e:
            raise EntryIOError(f"Cannot read {full}: {e}", context={"path": path}) from e

    def write_bytes(self, path: str, data: bytes) -> None:
        full = self.resolve(path)
        try:
            atomic_write(full, data)
        except OSError as e:
            raise EntryIOError(f"Cannot write {full}: {e}", context={"path": path}) from e

    def describe(self, path: str = "") -> str:
        return str(self.resolve(path)) if path else str(self.root)


class MemoryFileSystem(TargetFileSystem):
    """In-memory filesystem. Writes are a single dict assignment, hence atomic."""

    def __init__(self, files: dict[str, bytes | str] | None = None):
        self._lock = threading.Lock()
        self.files: dict[str, bytes] = {}
        self.writes: list[str] = []
        for path, data in (files or {}).items():
            self.files[path] = data.encode("utf-8") if isinstance(data, str) else data

    def read_bytes(self, path: str) -> bytes | None:
        with self._lock:
            return self.files.get(path)

    def write_bytes(self, path: str, data: bytes) -> None:
        with self._lock:
            self.files[path] = bytes(data)
            self.writes.append(path)

    def describe(self, path: str = "") -> str:
        return f"memory://{path}"


def atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` using a temp file + fsync + rename.

    The temporary file lives in the destination directory so the final
    ``os.replace`` never crosses filesystems. A failure at any point leaves
    the destination with its previous content and removes the temp file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "wb",
            dir=str(path.parent),
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            tmp_path = Path(f.name)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        if path.exists():
            os.chmod(tmp_path, path.stat().st_mode & 0o7777)
        os.replace(str(tmp_path), str(path))
        tmp_path = None
    finally:
        if tmp_path is not None and tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                logger.warning("Could not remove temporary file %s", tmp_path)
