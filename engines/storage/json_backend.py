"""
JSON file record backend for pagewright

Same semantics as the in-memory backend, but the file is the source of
truth. Every operation takes an OS-level lock on `<path>.lock`, reloads
the file, and only then checks versions or mutates. Writes go to a temp
file in the same directory and are moved into place with os.replace(),
so a crash never leaves a half written store behind.
"""

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout

from . import register_record_backend
from .memory_backend import MemoryRecordBackend

import sys
repo_root = Path(__file__).resolve().parent.parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from utilities import Print
from errors import PersistenceError


STORE_FORMAT_VERSION = 1


@register_record_backend("jsonfile")
class JsonFileBackendFactory:
    """Factory for creating JSON file backends."""

    @staticmethod
    def create(config: dict) -> "JsonFileRecordBackend":
        return JsonFileRecordBackend(config)


class JsonFileRecordBackend(MemoryRecordBackend):
    """
    File-backed RecordBackend, safe to share between processes.

    Attributes:
        path: Location of the JSON store file
        lock_timeout: Seconds to wait for the file lock
    """

    def __init__(self, config: dict):
        """
        Args:
            config: Configuration dictionary with keys:
                - path: str - Store file location (default: /tmp/pagewright/placements.json)
                - lock_timeout: float - Seconds to wait for the store lock (default: 10)
        """
        super().__init__(config)
        self.path = Path(config.get('path', '/tmp/pagewright/placements.json'))
        self.lock_timeout = float(config.get('lock_timeout', 10))
        self._file_lock = FileLock(str(self.path.with_name(self.path.name + '.lock')))

        with self._locked():
            Print("DEBUG", f"Opened record store {self.path} with {len(self._records)} record(s)")

    @contextmanager
    def _exclusive(self):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file_lock.acquire(timeout=self.lock_timeout)
        except Timeout as e:
            raise PersistenceError(f"Timed out waiting for the lock on {self.path}", diagnostic=str(e))
        except OSError as e:
            raise PersistenceError(f"Could not lock record store {self.path}", diagnostic=str(e))
        try:
            yield
        finally:
            self._file_lock.release()

    def _refresh(self) -> None:
        """Replace the cache with what is on disk; other instances may have written since."""
        if not self.path.exists():
            self._records, self._documents = {}, {}
            return

        try:
            with open(self.path, encoding='utf-8') as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read record store {self.path}", diagnostic=str(e))

        version = payload.get('formatVersion')
        if version != STORE_FORMAT_VERSION:
            raise PersistenceError(
                f"Unsupported record store format in {self.path}",
                diagnostic=f"expected formatVersion {STORE_FORMAT_VERSION}, found {version!r}",
            )

        self._records = {
            self._key(record['documentId'], record['recipientEmail']): record
            for record in payload.get('records', [])
        }
        self._documents = {str(k): dict(v) for k, v in payload.get('documents', {}).items()}
        Print("DEBUG", f"Loaded {len(self._records)} record(s) from {self.path}")

    def _write_payload(self, payload: dict) -> None:
        fd, temp_path = tempfile.mkstemp(prefix='.placements-', suffix='.json', dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, sort_keys=True)
            os.replace(temp_path, self.path)
        except BaseException:
            Path(temp_path).unlink(missing_ok=True)
            raise

    def _flush(self) -> None:
        payload = {
            'formatVersion': STORE_FORMAT_VERSION,
            'records': [self._records[key] for key in sorted(self._records)],
            'documents': self._documents,
        }
        try:
            self._write_payload(payload)
        except OSError as e:
            raise PersistenceError(f"Could not write record store {self.path}", diagnostic=str(e))

    @property
    def name(self) -> str:
        return "jsonfile"
