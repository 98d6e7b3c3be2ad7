"""
Storage Protocols for pagewright

Record backends persist signature records and per-document status.
Blob stores persist document bytes. The transform engines never call
either one; the orchestrator hands them bytes and records.
"""

from typing import Callable, List, Optional, Protocol


class RecordBackend(Protocol):
    """
    Protocol for signature record backends.

    Records are plain dicts in their persisted shape (see
    signatures.models.SignatureRecord.to_dict). Every write is a
    compare-and-set on the record's `version`.
    """

    def get_record(self, document_id: str, recipient: str) -> Optional[dict]:
        """Return the record for (document, recipient), or None."""
        ...

    def list_records(self, document_id: str) -> List[dict]:
        """Return every record on a document."""
        ...

    def put_record(self, record: dict, expected_version: int) -> dict:
        """
        Write a whole record.

        Args:
            record: Record dict; documentId and recipientEmail form the key
            expected_version: Version the write is based on (0 = record must not exist)

        Returns:
            The stored record, with `version` set to expected_version + 1

        Raises:
            StaleVersionError: If the stored version differs from expected_version
            PersistenceError: If the write fails
        """
        ...

    def delete_record(self, document_id: str, recipient: str, expected_version: Optional[int] = None) -> bool:
        """
        Delete one record.

        Returns:
            True if a record was deleted

        Raises:
            StaleVersionError: If expected_version is given and differs
        """
        ...

    def delete_records(self, document_id: str) -> int:
        """Delete every record on a document; returns how many were removed."""
        ...

    def get_document_state(self, document_id: str) -> dict:
        """Return {'status': ..., 'previousStatus': ...} for a document ({} if unknown)."""
        ...

    def update_document_state(self, document_id: str, transition: Callable[[dict, List[dict]], dict]) -> dict:
        """
        Atomically rewrite a document's state.

        `transition(state, records)` runs under the backend lock with the
        current state and every record on the document; its result is stored.

        Returns:
            The stored state
        """
        ...

    @property
    def name(self) -> str:
        """Backend identifier for logging."""
        ...


class BlobStore(Protocol):
    """
    Protocol for document byte stores.
    """

    def put(self, path: str, data: bytes, content_type: str) -> str:
        """
        Store bytes under `path`.

        Returns:
            URL the bytes can be retrieved from

        Raises:
            PersistenceError: If the write fails
        """
        ...

    def get(self, path: str) -> bytes:
        """Read back bytes previously stored under `path`."""
        ...

    @property
    def name(self) -> str:
        """Store identifier for logging."""
        ...
