"""
Caller-owned handle for a document being edited.

A DocumentSession holds the current bytes and the page layout that
describes them. Each transform replaces both and bumps the version; the
caller passes the session explicitly into every call and decides when
to discard it.
"""

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from errors import StaleVersionError
from processors.page_identity import PageDescriptor
from processors.transport import encode_document


@dataclass
class DocumentSession:
    """
    Attributes:
        data: Current document bytes
        pages: Descriptors of the current buffer, in buffer order
        name: File name used when persisting
        content_type: MIME type of `data`
        version: Incremented on every transform
        session_id: Opaque handle id, for logging only
    """
    data: bytes
    pages: List[PageDescriptor]
    name: str = "document.pdf"
    content_type: str = "application/pdf"
    version: int = 1
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def etag(self) -> str:
        """SHA-256 of the current bytes."""
        return hashlib.sha256(self.data).hexdigest()

    def check_etag(self, expected_etag: Optional[str]) -> None:
        """
        Raises:
            StaleVersionError: If `expected_etag` is given and differs from the current etag
        """
        if expected_etag is None:
            return
        current = self.etag
        if expected_etag != current:
            raise StaleVersionError(
                f"Document {self.name} changed since it was last read",
                expected=expected_etag,
                actual=current,
            )

    def advance(self, data: bytes, pages: List[PageDescriptor]) -> None:
        """Replace the current bytes and layout with a transform's output."""
        self.data = data
        self.pages = list(pages)
        self.version += 1
        self.updated_at = datetime.now(timezone.utc)

    def to_dict(self, include_data: bool = False) -> dict:
        result = {
            'sessionId': self.session_id,
            'name': self.name,
            'contentType': self.content_type,
            'version': self.version,
            'etag': self.etag,
            'pageCount': self.page_count,
            'pages': [page.to_dict() for page in self.pages],
            'updatedAt': self.updated_at.isoformat(),
        }
        if include_data:
            result['fileData'] = encode_document(self.data)
        return result
