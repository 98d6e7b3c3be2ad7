"""
In-memory record backend for pagewright

Keeps records in a dict keyed by (documentId, recipientEmail). All reads
and writes go through one lock and hand out deep copies, so callers can
never patch a stored record in place.
"""

import copy
import threading
from contextlib import contextmanager, nullcontext
from typing import Callable, Dict, List, Optional, Tuple

from . import register_record_backend

import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from utilities import Print
from errors import StaleVersionError


# (current state, records on the document) -> new state
StateTransition = Callable[[dict, List[dict]], dict]


@register_record_backend("memory")
class MemoryBackendFactory:
    """Factory for creating in-memory backends."""

    @staticmethod
    def create(config: dict) -> "MemoryRecordBackend":
        return MemoryRecordBackend(config)


class MemoryRecordBackend:
    """
    Dict-backed implementation of RecordBackend.

    Persistent subclasses hook in at three points:
    _exclusive() guards against other processes, _refresh() reloads what
    they wrote, and _flush() persists after each mutation. A failed flush
    rolls the mutation back.
    """

    def __init__(self, config: dict):
        self.config = config
        self._lock = threading.RLock()
        self._records: Dict[Tuple[str, str], dict] = {}
        self._documents: Dict[str, dict] = {}

    @staticmethod
    def _key(document_id: str, recipient: str) -> Tuple[str, str]:
        return (str(document_id), str(recipient))

    def _exclusive(self):
        return nullcontext()

    def _refresh(self) -> None:
        """Nothing outside this process writes an in-memory store."""

    def _flush(self) -> None:
        """Nothing to persist in memory."""

    @contextmanager
    def _locked(self):
        with self._lock, self._exclusive():
            self._refresh()
            yield

    def _commit(self, mutate: Callable[[], None]) -> None:
        """Apply a mutation and flush it, restoring the previous state if the flush fails."""
        records_before = dict(self._records)
        documents_before = dict(self._documents)
        mutate()
        try:
            self._flush()
        except Exception:
            self._records = records_before
            self._documents = documents_before
            raise

    def _check_version(self, key: Tuple[str, str], expected_version: int) -> None:
        current = self._records.get(key)
        current_version = current.get('version', 0) if current is not None else 0
        if current_version != expected_version:
            raise StaleVersionError(
                f"Signature record for {key[1]} on {key[0]} was modified concurrently",
                expected=expected_version,
                actual=current_version,
            )

    def _document_records(self, document_id: str) -> List[dict]:
        return [
            copy.deepcopy(record)
            for (doc_id, _), record in sorted(self._records.items())
            if doc_id == str(document_id)
        ]

    def get_record(self, document_id: str, recipient: str) -> Optional[dict]:
        with self._locked():
            record = self._records.get(self._key(document_id, recipient))
            return copy.deepcopy(record) if record is not None else None

    def list_records(self, document_id: str) -> List[dict]:
        with self._locked():
            return self._document_records(document_id)

    def put_record(self, record: dict, expected_version: int) -> dict:
        key = self._key(record['documentId'], record['recipientEmail'])
        with self._locked():
            self._check_version(key, expected_version)
            stored = copy.deepcopy(record)
            stored['version'] = expected_version + 1
            self._commit(lambda: self._records.__setitem__(key, stored))
            Print("DEBUG", f"Stored record {key} v{stored['version']} ({len(stored.get('placements', []))} placements)")
            return copy.deepcopy(stored)

    def delete_record(self, document_id: str, recipient: str, expected_version: Optional[int] = None) -> bool:
        key = self._key(document_id, recipient)
        with self._locked():
            if key not in self._records:
                return False
            if expected_version is not None:
                self._check_version(key, expected_version)
            self._commit(lambda: self._records.pop(key))
            Print("DEBUG", f"Deleted record {key}")
            return True

    def delete_records(self, document_id: str) -> int:
        with self._locked():
            keys = [key for key in self._records if key[0] == str(document_id)]
            if not keys:
                return 0

            def remove_all():
                for key in keys:
                    del self._records[key]

            self._commit(remove_all)
            Print("DEBUG", f"Deleted {len(keys)} record(s) on document {document_id}")
            return len(keys)

    def get_document_state(self, document_id: str) -> dict:
        with self._locked():
            return dict(self._documents.get(str(document_id), {}))

    def update_document_state(self, document_id: str, transition: StateTransition) -> dict:
        document_id = str(document_id)
        with self._locked():
            current = dict(self._documents.get(document_id, {}))
            new_state = dict(transition(dict(current), self._document_records(document_id)))
            if new_state != current:
                self._commit(lambda: self._documents.__setitem__(document_id, new_state))
            return dict(new_state)

    @property
    def name(self) -> str:
        return "memory"
