"""JSON document persistence with all-or-nothing writes.

Every Lockstep store keeps its records as JSON documents grouped in
collections. ``DocumentStore`` is either purely in-memory (``root=None``,
used by tests and embedding callers) or rooted at a state directory, where
each collection is a sub-directory and each document one ``<key>.json``
file. Audit-style logs are JSON-lines files.

Atomicity: a document is written to a temporary file in the same directory
and moved into place with ``os.replace``. Readers therefore see either the
old document or the new one, never a partial write. If the write fails,
``StorageError`` is raised and the old document is untouched.

Mutual exclusion: ``lock(collection, key)`` returns a ``DocumentLock``. Under a
state directory it holds ``fcntl.flock`` on a ``.lock`` sidecar next to the
document, so separate processes sharing the directory (two CLI invocations)
serialise their read-check-write sequences, not just threads of one process.
"""

from __future__ import annotations

import copy
import fcntl
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import IO, Any
from urllib.parse import quote, unquote

from lockstep.exceptions import StorageError

logger = logging.getLogger(__name__)


_LOCK_SUFFIX = ".lock"


def _dumps(doc: Any) -> str:
    return json.dumps(doc, indent=2, sort_keys=True)


class DocumentLock:
    """Exclusive lock on one document or log, reusable as a context manager.

    Always a process-local ``threading.Lock``; with a *path* it also holds an
    ``fcntl.flock`` on that sidecar file while entered. Not re-entrant.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._thread_lock = threading.Lock()
        self._handle: IO[str] | None = None

    def __enter__(self) -> DocumentLock:
        self._thread_lock.acquire()
        if self._path is None:
            return self
        handle: IO[str] | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            handle = self._path.open("a+", encoding="utf-8")
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        except OSError as exc:
            if handle is not None:
                handle.close()
            self._thread_lock.release()
            raise StorageError(f"Could not lock {self._path}: {exc}") from exc
        self._handle = handle
        return self

    def __exit__(self, *exc_info: object) -> None:
        handle, self._handle = self._handle, None
        try:
            if handle is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                handle.close()
        finally:
            self._thread_lock.release()


class DocumentStore:
    """Collections of JSON documents, in memory or under a directory.

    Args:
        root: State directory. ``None`` keeps everything in memory.
    """

    def __init__(self, root: Path | None = None) -> None:
        self._root = root
        self._lock = threading.RLock()
        self._memory: dict[str, dict[str, Any]] = {}
        self._lines: dict[str, list[Any]] = {}
        self._doc_locks: dict[tuple[str, str | None], DocumentLock] = {}
        if root is not None:
            root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path | None:
        return self._root

    def _path(self, collection: str, key: str) -> Path:
        assert self._root is not None
        return self._root / collection / f"{quote(key, safe='')}.json"

    def lock(self, collection: str, key: str | None = None) -> DocumentLock:
        """Return the exclusive lock of one document, or of a log when *key* is None.

        The same object is returned for the same document.
        """
        with self._lock:
            found = self._doc_locks.get((collection, key))
            if found is None:
                found = DocumentLock(self._lock_path(collection, key))
                self._doc_locks[(collection, key)] = found
            return found

    def _lock_path(self, collection: str, key: str | None) -> Path | None:
        if self._root is None:
            return None
        if key is None:
            return self._root / f"{collection}.jsonl{_LOCK_SUFFIX}"
        path = self._path(collection, key)
        return path.with_name(path.name + _LOCK_SUFFIX)

    # -- Documents ----------------------------------------------------------

    def read(self, collection: str, key: str) -> dict[str, Any] | None:
        """Return a copy of the document, or None if it does not exist."""
        with self._lock:
            if self._root is None:
                doc = self._memory.get(collection, {}).get(key)
                return copy.deepcopy(doc)
            path = self._path(collection, key)
            if not path.exists():
                return None
            return json.loads(path.read_text(encoding="utf-8"))

    def write(self, collection: str, key: str, doc: dict[str, Any]) -> None:
        """Replace a document atomically.

        Raises:
            StorageError: If the document could not be written. The
                previous version of the document is left intact.
        """
        text = _dumps(doc)
        with self._lock:
            if self._root is None:
                self._memory.setdefault(collection, {})[key] = json.loads(text)
                return
            self._atomic_write(self._path(collection, key), text)

    def create(self, collection: str, key: str, doc: dict[str, Any]) -> bool:
        """Write a document only if the key is new.

        Returns:
            True if the document was created, False if it already existed.
        """
        with self.lock(collection, key):
            if self.read(collection, key) is not None:
                return False
            self.write(collection, key, doc)
            return True

    def keys(self, collection: str) -> list[str]:
        """Return the sorted keys of a collection."""
        with self._lock:
            if self._root is None:
                return sorted(self._memory.get(collection, {}))
            folder = self._root / collection
            if not folder.is_dir():
                return []
            return sorted(unquote(p.stem) for p in folder.glob("*.json"))

    # -- Append-only logs ---------------------------------------------------

    def append_line(self, collection: str, doc: dict[str, Any]) -> None:
        """Append one JSON record to a log collection."""
        line = json.dumps(doc, sort_keys=True)
        with self._lock:
            if self._root is None:
                self._lines.setdefault(collection, []).append(json.loads(line))
                return
            path = self._root / f"{collection}.jsonl"
            try:
                with path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
                    fh.flush()
                    os.fsync(fh.fileno())
            except OSError as exc:
                raise StorageError(f"Could not append to {path}: {exc}") from exc

    def count_lines(self, collection: str) -> int:
        """Number of records in a log collection."""
        with self._lock:
            if self._root is None:
                return len(self._lines.get(collection, []))
            path = self._root / f"{collection}.jsonl"
            if not path.exists():
                return 0
            with path.open(encoding="utf-8") as fh:
                return sum(1 for line in fh if line.strip())

    def read_lines(self, collection: str) -> list[dict[str, Any]]:
        with self._lock:
            if self._root is None:
                return copy.deepcopy(self._lines.get(collection, []))
            path = self._root / f"{collection}.jsonl"
            if not path.exists():
                return []
            return [
                json.loads(line)
                for line in path.read_text(encoding="utf-8").splitlines()
                if line.strip()
            ]

    # -- Internals ----------------------------------------------------------

    @staticmethod
    def _atomic_write(path: Path, text: str) -> None:
        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=path.parent,
                prefix=f".{path.stem}.", suffix=".tmp", delete=False,
            ) as fh:
                tmp_name = fh.name
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error("Atomic write of %s failed: %s", path, exc)
            raise StorageError(f"Could not write {path}: {exc}") from exc
