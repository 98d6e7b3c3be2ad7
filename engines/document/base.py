"""
Document Engine Protocol for pagewright

Defines the contract that all page-based document engines must implement.
Uses Python's Protocol for structural subtyping (duck typing with type safety).
"""

from typing import Protocol, Tuple


class PageDocument(Protocol):
    """
    A page-addressable in-memory document.

    Page indices are 0-based at this layer; the transform processors take
    care of the 1-based page numbers callers use.
    """

    @property
    def page_count(self) -> int:
        """Number of pages in the document."""
        ...

    def get_rotation(self, index: int) -> int:
        """
        Effective absolute rotation of a page.

        Returns:
            One of 0, 90, 180, 270
        """
        ...

    def set_rotation(self, index: int, rotation: int) -> None:
        """
        Set the absolute rotation of a page.

        Args:
            index: 0-based page index
            rotation: Target rotation (0, 90, 180 or 270)
        """
        ...

    def page_size(self, index: int) -> Tuple[float, float]:
        """
        Intrinsic (unrotated) page width and height in points.
        """
        ...

    def append_page(self, source: "PageDocument", index: int) -> int:
        """
        Copy one page of `source` to the end of this document.

        Page-level resources are carried over as-is, nothing is re-rendered.

        Returns:
            0-based index of the new page in this document
        """
        ...

    def to_bytes(self) -> bytes:
        """Serialize the document to a new byte buffer."""
        ...

    def close(self) -> None:
        """Release the underlying document handle."""
        ...


class DocumentEngine(Protocol):
    """
    Protocol for document engines.

    Document engines are responsible for:
    - Parsing byte buffers into PageDocument objects
    - Creating empty documents that pages can be copied into
    """

    def load(self, data: bytes) -> PageDocument:
        """
        Parse a byte buffer.

        The buffer itself is never modified.

        Raises:
            ParseError: If the bytes are not a valid page-based document
        """
        ...

    def create(self) -> PageDocument:
        """Create a new document with no pages."""
        ...

    def looks_like_document(self, data: bytes) -> bool:
        """Cheap header check, performed before a full parse."""
        ...

    @property
    def content_type(self) -> str:
        """MIME type of documents produced by this engine."""
        ...

    @property
    def name(self) -> str:
        """
        Engine identifier for logging and debugging.

        Returns:
            Unique name of this engine (e.g., 'pikepdf')
        """
        ...
