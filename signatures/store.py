"""
Signature Placement Store for pagewright

Every operation reads the whole SignatureRecord, validates, and writes
the whole record back through a compare-and-set on its version. A
record never exists with an empty placement list: removing the last
placement deletes the record, and when a document has no records left
its status reverts to whatever it was before the first signature.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Sequence, Union

import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from utilities import Print
from errors import RecordNotFound, StaleVersionError, ValidationError
from signatures.models import DocumentStatus, SignatureRecord, utc_now_iso
from signatures.validation import (
    PageSizes,
    PlacementDefaults,
    apply_position_update,
    filter_valid_placements,
    normalize_placement,
)


class RecipientScope(str, Enum):
    """Explicit scope for clearing every recipient on a document."""
    ALL = "*"


Recipient = Union[str, RecipientScope]


@dataclass
class StoreOutcome:
    """
    Result of one store operation.

    Attributes:
        record: The stored record afterwards (None when it was deleted or never existed)
        status: Document status after the operation
        removed: Number of placements removed
        warnings: One entry per dropped placement
    """
    record: Optional[SignatureRecord]
    status: DocumentStatus
    removed: int = 0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'record': self.record.to_dict() if self.record else None,
            'status': self.status.value,
            'removed': self.removed,
        }


class SignaturePlacementStore:
    """
    Attributes:
        backend: RecordBackend the records live in
        defaults: Fallback geometry for incoming placements
        probe_images: Whether image payloads are decoded and verified
    """

    def __init__(self, backend, config: Optional[dict] = None):
        """
        Args:
            backend: RecordBackend instance
            config: The `placements` section of the configuration
        """
        config = config or {}
        self.backend = backend
        defaults = dict(config.get('defaults', {}))
        if 'min_image_data_length' in config:
            defaults['min_image_data_length'] = config['min_image_data_length']
        self.defaults = PlacementDefaults.from_config(defaults)
        self.probe_images = config.get('probe_images', True)
        self.recipient_aliases = {
            str(k).strip().lower(): str(v).strip() for k, v in config.get('recipient_aliases', {}).items()
        }
        token = config.get('all_recipients_token')
        self.all_recipients_token = token.strip().lower() if token else None

    # ---- recipients -----------------------------------------------------

    def is_all_recipients(self, recipient: Recipient) -> bool:
        if recipient is RecipientScope.ALL:
            return True
        return (
            self.all_recipients_token is not None
            and isinstance(recipient, str)
            and recipient.strip().lower() == self.all_recipients_token
        )

    def resolve_recipient(self, recipient: Recipient) -> str:
        """
        Map a recipient to its storage key, applying configured aliases.

        Raises:
            ValidationError: If the recipient is empty or is the all-recipients scope
        """
        if isinstance(recipient, RecipientScope) or not isinstance(recipient, str):
            raise ValidationError("A single recipient is required", diagnostic=f"found {recipient!r}")
        cleaned = recipient.strip()
        if not cleaned:
            raise ValidationError("Recipient must not be empty")
        alias = self.recipient_aliases.get(cleaned.lower())
        if alias:
            Print("DEBUG", f"Recipient {cleaned} resolved to {alias}")
            return alias
        return cleaned

    @staticmethod
    def _document_key(document_id: str) -> str:
        key = str(document_id).strip()
        if not key:
            raise ValidationError("Document id must not be empty")
        return key

    # ---- reads ----------------------------------------------------------

    def get_record(self, document_id: str, recipient: str) -> Optional[SignatureRecord]:
        stored = self.backend.get_record(self._document_key(document_id), self.resolve_recipient(recipient))
        return SignatureRecord.from_dict(stored) if stored is not None else None

    def list_records(self, document_id: str) -> List[SignatureRecord]:
        return [SignatureRecord.from_dict(r) for r in self.backend.list_records(self._document_key(document_id))]

    def document_status(self, document_id: str) -> DocumentStatus:
        state = self.backend.get_document_state(self._document_key(document_id))
        return DocumentStatus(state.get('status', DocumentStatus.UNSIGNED.value))

    def register_document(self, document_id: str, status: DocumentStatus = DocumentStatus.UNSIGNED) -> None:
        """Record a document's status before any signature is placed on it."""
        status = DocumentStatus(status)

        def transition(state: dict, records: List[dict]) -> dict:
            if records and state.get('status') == DocumentStatus.SIGNED.value:
                # Signed documents keep their status; only the state to revert to changes.
                return dict(state, previousStatus=status.value)
            return {'status': status.value}

        self.backend.update_document_state(self._document_key(document_id), transition)

    # ---- status transitions --------------------------------------------

    def _reconcile_status(self, document_id: str) -> DocumentStatus:
        """
        Make the document status agree with its records: signed while any
        record exists, back to the prior status once none is left. The
        backend runs the check and the write as one atomic step.
        """
        def transition(state: dict, records: List[dict]) -> dict:
            current = state.get('status', DocumentStatus.UNSIGNED.value)
            if records and current != DocumentStatus.SIGNED.value:
                Print("STATE", f"Document {document_id}: {current} -> signed")
                return {'status': DocumentStatus.SIGNED.value, 'previousStatus': current}
            if not records and current == DocumentStatus.SIGNED.value:
                previous = state.get('previousStatus') or DocumentStatus.UNSIGNED.value
                Print("STATE", f"Document {document_id}: signed -> {previous}")
                return {'status': previous}
            return state

        state = self.backend.update_document_state(document_id, transition)
        return DocumentStatus(state.get('status', DocumentStatus.UNSIGNED.value))

    # ---- writes ---------------------------------------------------------

    def _read_for_write(self, document_id: str, recipient: str, expected_version: Optional[int]):
        stored = self.backend.get_record(document_id, recipient)
        current_version = stored.get('version', 0) if stored is not None else 0
        if expected_version is not None and expected_version != current_version:
            raise StaleVersionError(
                f"Signature record for {recipient} on {document_id} was modified concurrently",
                expected=expected_version,
                actual=current_version,
            )
        record = SignatureRecord.from_dict(stored) if stored is not None else None
        return record, current_version

    def _write(self, record: SignatureRecord, base_version: int) -> SignatureRecord:
        now = utc_now_iso()
        record.status = DocumentStatus.SIGNED
        record.updated_at = now
        record.signed_at = record.signed_at or now
        stored = self.backend.put_record(record.to_dict(), base_version)
        return SignatureRecord.from_dict(stored)

    def _delete(self, record: SignatureRecord, base_version: int) -> DocumentStatus:
        self.backend.delete_record(record.document_id, record.recipient_email, base_version)
        Print("INFO", f"Deleted signature record for {record.recipient_email} on {record.document_id}")
        return self._reconcile_status(record.document_id)

    def replace_all(
        self,
        document_id: str,
        recipient: str,
        placements: Sequence[Mapping],
        page_sizes: Optional[PageSizes] = None,
        expected_version: Optional[int] = None,
    ) -> StoreOutcome:
        """
        Replace every placement a recipient has on a document.

        An empty list deletes the record. Otherwise invalid placements are
        dropped with a warning and the survivors overwrite the stored list.

        Args:
            page_sizes: page number -> (width, height) of the current document
            expected_version: Version last read by the caller (None = current)

        Raises:
            ValidationError: If placements were given but none is valid
            StaleVersionError: If the record changed since expected_version
        """
        document_id = self._document_key(document_id)
        recipient = self.resolve_recipient(recipient)
        record, current_version = self._read_for_write(document_id, recipient, expected_version)

        if not placements:
            if record is None:
                Print("INFO", f"No signature record for {recipient} on {document_id}, nothing to clear")
                return StoreOutcome(record=None, status=self._reconcile_status(document_id))
            removed = len(record.placements)
            status = self._delete(record, current_version)
            return StoreOutcome(record=None, status=status, removed=removed)

        valid, dropped = filter_valid_placements(placements, self.defaults, page_sizes, self.probe_images)
        if not valid:
            raise ValidationError(
                f"None of the {len(placements)} placement(s) is valid",
                diagnostic="; ".join(dropped),
            )

        if record is None:
            record = SignatureRecord(document_id=document_id, recipient_email=recipient, placements=valid)
        else:
            record.placements = valid
        stored = self._write(record, current_version)
        status = self._reconcile_status(document_id)

        Print("SUCCESS", f"Stored {len(valid)} placement(s) for {recipient} on {document_id} (v{stored.version})")
        return StoreOutcome(record=stored, status=status, warnings=dropped)

    def add_one(
        self,
        document_id: str,
        recipient: str,
        placement: Mapping,
        page_sizes: Optional[PageSizes] = None,
        expected_version: Optional[int] = None,
    ) -> StoreOutcome:
        """
        Append one placement, creating the record on first use.

        A placement without `content` is numbered after the ones already stored.

        Raises:
            ValidationError: If the placement is invalid or its id is already used
        """
        document_id = self._document_key(document_id)
        recipient = self.resolve_recipient(recipient)
        record, current_version = self._read_for_write(document_id, recipient, expected_version)

        new = normalize_placement(placement, self.defaults, page_sizes, self.probe_images)
        if record is None:
            record = SignatureRecord(document_id=document_id, recipient_email=recipient, placements=[])
        if record.find(new.id) >= 0:
            raise ValidationError(f"Placement {new.id} already exists for {recipient} on {document_id}")
        if new.content is None:
            new.content = str(len(record.placements) + 1)

        record.placements.append(new)
        stored = self._write(record, current_version)
        status = self._reconcile_status(document_id)

        Print("SUCCESS", f"Added placement {new.id} for {recipient} on {document_id} ({len(stored.placements)} total)")
        return StoreOutcome(record=stored, status=status)

    def update_one(
        self,
        document_id: str,
        recipient: str,
        placement_id: str,
        partial_position: Mapping,
        page_sizes: Optional[PageSizes] = None,
        expected_version: Optional[int] = None,
    ) -> StoreOutcome:
        """
        Merge position fields into one placement and write the record back.

        Raises:
            RecordNotFound: If the record or placement does not exist
            ValidationError: If the partial position is invalid
            StaleVersionError: If the record changed since it was read
        """
        document_id = self._document_key(document_id)
        recipient = self.resolve_recipient(recipient)
        record, current_version = self._read_for_write(document_id, recipient, expected_version)
        if record is None:
            raise RecordNotFound(f"No signature record for {recipient} on {document_id}")

        index = record.find(placement_id)
        if index < 0:
            raise RecordNotFound(
                f"Placement {placement_id} not found",
                diagnostic=f"record has: {', '.join(p.id for p in record.placements)}",
            )

        record.placements[index] = apply_position_update(record.placements[index], partial_position, page_sizes)
        stored = self._write(record, current_version)
        Print("SUCCESS", f"Updated placement {placement_id} for {recipient} on {document_id} (v{stored.version})")
        return StoreOutcome(record=stored, status=self._reconcile_status(document_id))

    def delete_one(
        self,
        document_id: str,
        recipient: str,
        placement_id: str,
        expected_version: Optional[int] = None,
    ) -> StoreOutcome:
        """
        Remove one placement; the record goes away with its last placement.

        Raises:
            RecordNotFound: If the record or placement does not exist
        """
        document_id = self._document_key(document_id)
        recipient = self.resolve_recipient(recipient)
        record, current_version = self._read_for_write(document_id, recipient, expected_version)
        if record is None:
            raise RecordNotFound(f"No signature record for {recipient} on {document_id}")

        index = record.find(placement_id)
        if index < 0:
            raise RecordNotFound(f"Placement {placement_id} not found")

        del record.placements[index]
        if not record.placements:
            status = self._delete(record, current_version)
            return StoreOutcome(record=None, status=status, removed=1)

        stored = self._write(record, current_version)
        Print("INFO", f"Removed placement {placement_id}; {len(stored.placements)} left for {recipient}")
        return StoreOutcome(record=stored, status=self._reconcile_status(document_id), removed=1)

    def clear_all(self, document_id: str, recipient: Recipient) -> StoreOutcome:
        """
        Remove every placement for one recipient, or for every recipient
        when `recipient` is RecipientScope.ALL or the configured
        all-recipients token.
        """
        document_id = self._document_key(document_id)

        if self.is_all_recipients(recipient):
            records = self.list_records(document_id)
            removed = sum(len(r.placements) for r in records)
            self.backend.delete_records(document_id)
            Print("INFO", f"Cleared {len(records)} record(s), {removed} placement(s) on {document_id}")
            return StoreOutcome(record=None, status=self._reconcile_status(document_id), removed=removed)

        recipient = self.resolve_recipient(recipient)
        record, current_version = self._read_for_write(document_id, recipient, None)
        if record is None:
            return StoreOutcome(record=None, status=self._reconcile_status(document_id))
        removed = len(record.placements)
        status = self._delete(record, current_version)
        return StoreOutcome(record=None, status=status, removed=removed)
