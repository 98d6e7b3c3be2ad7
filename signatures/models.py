"""
Signature placement aggregate.

A SignatureRecord holds every placement one recipient has on one
document. It is always read, validated and written back as a whole; the
persisted dict carries a schema version so old shapes can be rejected
instead of being patched blindly.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from errors import PersistenceError


SCHEMA_VERSION = 1


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PlacementSource(str, Enum):
    """How the signature image was captured."""
    CANVAS = "canvas"
    UPLOAD = "upload"


class DocumentStatus(str, Enum):
    """Signing status of the owning document."""
    DRAFT = "draft"
    UNSIGNED = "unsigned"
    SIGNED = "signed"


@dataclass
class SignaturePlacement:
    """
    One signature anchored on one page.

    Absolute coordinates are in page units as captured; relative
    coordinates are fractions (0..1) of the page width/height.
    """
    id: str
    page: int
    x: float
    y: float
    width: float
    height: float
    relative_x: float
    relative_y: float
    relative_width: float
    relative_height: float
    image_data: str
    source: PlacementSource = PlacementSource.CANVAS
    timestamp: str = field(default_factory=utc_now_iso)
    content: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'source': self.source.value,
            'timestamp': self.timestamp,
            'content': self.content,
            'imageData': self.image_data,
            'page': self.page,
            'x': self.x,
            'y': self.y,
            'width': self.width,
            'height': self.height,
            'relativeX': self.relative_x,
            'relativeY': self.relative_y,
            'relativeWidth': self.relative_width,
            'relativeHeight': self.relative_height,
        }

    @classmethod
    def from_stored(cls, data: dict) -> "SignaturePlacement":
        """Rebuild a placement from its persisted dict (already validated on write)."""
        return cls(
            id=data['id'],
            page=int(data['page']),
            x=float(data['x']),
            y=float(data['y']),
            width=float(data['width']),
            height=float(data['height']),
            relative_x=float(data['relativeX']),
            relative_y=float(data['relativeY']),
            relative_width=float(data['relativeWidth']),
            relative_height=float(data['relativeHeight']),
            image_data=data['imageData'],
            source=PlacementSource(data['source']),
            timestamp=data['timestamp'],
            content=data.get('content'),
        )


@dataclass
class SignatureRecord:
    """
    All placements for one (document, recipient) pair.

    Attributes:
        version: Store version this record was read at (0 = not yet stored)
    """
    document_id: str
    recipient_email: str
    placements: List[SignaturePlacement]
    status: DocumentStatus = DocumentStatus.SIGNED
    signed_at: Optional[str] = None
    updated_at: Optional[str] = None
    version: int = 0
    schema_version: int = SCHEMA_VERSION

    def find(self, placement_id: str) -> int:
        """Index of a placement by id, or -1."""
        for index, placement in enumerate(self.placements):
            if placement.id == placement_id:
                return index
        return -1

    def to_dict(self) -> dict:
        return {
            'schemaVersion': self.schema_version,
            'version': self.version,
            'documentId': self.document_id,
            'recipientEmail': self.recipient_email,
            'status': self.status.value,
            'signedAt': self.signed_at,
            'updatedAt': self.updated_at,
            'placements': [placement.to_dict() for placement in self.placements],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SignatureRecord":
        schema_version = data.get('schemaVersion')
        if schema_version != SCHEMA_VERSION:
            raise PersistenceError(
                "Unsupported signature record schema",
                diagnostic=f"expected schemaVersion {SCHEMA_VERSION}, found {schema_version!r}",
            )
        try:
            return cls(
                document_id=data['documentId'],
                recipient_email=data['recipientEmail'],
                placements=[SignaturePlacement.from_stored(p) for p in data.get('placements', [])],
                status=DocumentStatus(data.get('status', DocumentStatus.SIGNED.value)),
                signed_at=data.get('signedAt'),
                updated_at=data.get('updatedAt'),
                version=int(data.get('version', 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError("Stored signature record is malformed", diagnostic=repr(e))
