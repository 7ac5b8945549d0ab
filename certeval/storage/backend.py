"""
Storage backends.

Records are JSON-compatible dicts keyed by "id" and grouped in named
tables. Backends assign `version` (incremented on every replace) and
`sequence` (monotonic per table, assigned on insert). replace() and
delete() take the version the caller last read and raise ConflictError
if the stored record has moved on.

Usage:
    backend = JsonFileBackend(Path("~/.certeval/store").expanduser())
    rec = backend.insert("criteria", {"id": "abc", "criteria": {...}})
    backend.replace("criteria", {**rec, "threshold": 80}, expected_version=rec["version"])
"""

import copy
import json
import logging
import os
import platform
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

from utils.exceptions import ConflictError, NotFoundError
from utils.retry import RetryStrategies, with_retry

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class StorageBackend(Protocol):
    """Interface the stores depend on."""

    def get(self, table: str, record_id: str) -> Optional[Record]:
        ...

    def insert(self, table: str, record: Record) -> Record:
        ...

    def replace(self, table: str, record: Record, expected_version: Optional[int] = None) -> Record:
        ...

    def delete(self, table: str, record_id: str, expected_version: Optional[int] = None) -> Record:
        ...

    def scan(self, table: str, predicate: Optional[Callable[[Record], bool]] = None) -> List[Record]:
        ...

    def next_sequence(self, table: str) -> int:
        ...


class InMemoryBackend:
    """
    Dict-of-dicts backend.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store. A single re-entrant lock serialises all
    access.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, Record]] = {}
        self._sequences: Dict[str, int] = {}
        self._lock = threading.RLock()

    @contextmanager
    def _locked(self, table: str) -> Iterator[Dict[str, Record]]:
        """Hold the backend lock and yield the rows of one table."""
        with self._lock:
            yield self._tables.setdefault(table, {})

    def _persist(self, table: str) -> None:
        """Hook for durable subclasses; called inside _locked() after each mutation."""

    def _bump_sequence(self, table: str) -> int:
        self._sequences[table] = self._sequences.get(table, 0) + 1
        return self._sequences[table]

    def next_sequence(self, table: str) -> int:
        with self._locked(table):
            sequence = self._bump_sequence(table)
            self._persist(table)
            return sequence

    def get(self, table: str, record_id: str) -> Optional[Record]:
        with self._locked(table) as rows:
            record = rows.get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def insert(self, table: str, record: Record) -> Record:
        with self._locked(table) as rows:
            record_id = record["id"]
            if record_id in rows:
                raise ConflictError(f"{table} record {record_id} already exists")
            stored = copy.deepcopy(record)
            stored["version"] = 1
            stored["sequence"] = self._bump_sequence(table)
            rows[record_id] = stored
            self._persist(table)
            return copy.deepcopy(stored)

    def replace(self, table: str, record: Record, expected_version: Optional[int] = None) -> Record:
        with self._locked(table) as rows:
            record_id = record["id"]
            current = rows.get(record_id)
            if current is None:
                raise NotFoundError(f"{table} record {record_id} not found")
            if expected_version is not None and current["version"] != expected_version:
                raise ConflictError(
                    f"{table} record {record_id} is at version {current['version']}, "
                    f"expected {expected_version}"
                )
            stored = copy.deepcopy(record)
            stored["version"] = current["version"] + 1
            stored["sequence"] = current["sequence"]
            rows[record_id] = stored
            self._persist(table)
            return copy.deepcopy(stored)

    def delete(self, table: str, record_id: str, expected_version: Optional[int] = None) -> Record:
        with self._locked(table) as rows:
            current = rows.get(record_id)
            if current is None:
                raise NotFoundError(f"{table} record {record_id} not found")
            if expected_version is not None and current["version"] != expected_version:
                raise ConflictError(
                    f"{table} record {record_id} is at version {current['version']}, "
                    f"expected {expected_version}"
                )
            del rows[record_id]
            self._persist(table)
            return copy.deepcopy(current)

    def scan(self, table: str, predicate: Optional[Callable[[Record], bool]] = None) -> List[Record]:
        """All records of a table in insertion order, optionally filtered."""
        with self._locked(table) as rows:
            ordered = sorted(rows.values(), key=lambda r: r["sequence"])
            return [copy.deepcopy(r) for r in ordered if predicate is None or predicate(r)]


class FileLock:
    """Exclusive inter-process lock on a sidecar `<file>.lock`."""

    def __init__(self, path: Path):
        self.lockfile = Path(f"{path}.lock")
        self._handle = None

    def acquire(self) -> None:
        self._handle = open(self.lockfile, "a+b")
        if platform.system() == "Windows":
            import msvcrt

            while True:
                try:
                    self._handle.seek(0)
                    msvcrt.locking(self._handle.fileno(), msvcrt.LK_NBLCK, 1)
                    return
                except OSError:
                    time.sleep(0.01)
        else:
            import fcntl

            fcntl.lockf(self._handle, fcntl.LOCK_EX)

    def release(self) -> None:
        if self._handle is None:
            return
        if platform.system() == "Windows":
            import msvcrt

            self._handle.seek(0)
            msvcrt.locking(self._handle.fileno(), msvcrt.LK_UNLCK, 1)
        # Closing the handle drops the POSIX lock; the lock file itself stays
        self._handle.close()
        self._handle = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *args):
        self.release()


class JsonFileBackend(InMemoryBackend):
    """
    One JSON file per table under a directory.

    Every operation holds an exclusive lock on the table's lock file and
    re-reads the table from disk first, so several processes can share a
    directory. Mutations are written back atomically (temp file + rename)
    before the lock is released.
    """

    def __init__(self, directory: Path):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, table: str) -> Path:
        return self.directory / f"{table}.json"

    @contextmanager
    def _locked(self, table: str) -> Iterator[Dict[str, Record]]:
        with self._lock, FileLock(self._path(table)):
            self._load(table)
            yield self._tables[table]

    def _load(self, table: str) -> None:
        path = self._path(table)
        rows: Dict[str, Record] = {}
        sequence = 0
        if path.exists():
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            rows = data.get("records", {})
            sequence = int(data.get("sequence", 0))
        self._tables[table] = rows
        self._sequences[table] = sequence

    def _persist(self, table: str) -> None:
        payload = {"sequence": self._sequences.get(table, 0), "records": self._tables.get(table, {})}
        self._write_atomic(self._path(table), payload)
        logger.debug(f"Wrote {len(payload['records'])} {table} records to {self._path(table)}")

    @with_retry(RetryStrategies.file_operation())
    def _write_atomic(self, path: Path, payload: Dict[str, Any]) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, default=str)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
