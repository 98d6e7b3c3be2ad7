"""
Merge and reorder engine for pagewright.

merge():   main document + additional documents -> one document, with the
           additional pages inserted as one ordered block at the start or end.
reorder(): current document + full page order -> new document, optionally
           rotating pages on the way.

Both copy pages one at a time, in final output order, into a fresh
document and serialize it. Nothing is returned unless the whole document
was assembled.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from utilities import Print
from errors import ParseError, ValidationError
from engines.document import DocumentEngine, PageDocument
from processors.page_identity import (
    PageDescriptor,
    PageIdentityTracker,
    canonical_indices,
    check_unique_ids,
    layout_indices,
    renumber,
)
from processors.rotation import normalize_rotation


class InsertPosition(str, Enum):
    """Where the block of additional pages goes in a merge."""
    START = "start"
    END = "end"

    @classmethod
    def coerce(cls, value: Union["InsertPosition", str]) -> "InsertPosition":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f"Invalid insert position: {value!r}",
                diagnostic="expected 'start' or 'end'",
            )


@dataclass
class SourceDocument:
    """
    An additional document offered to a merge.

    Attributes:
        data: Raw document bytes
        name: Display name used in warnings
        content_type: Declared MIME type; non-PDF sources are skipped
    """
    data: bytes
    name: str = ""
    content_type: str = "application/pdf"

    @classmethod
    def coerce(cls, value: Union["SourceDocument", bytes, bytearray], index: int) -> "SourceDocument":
        if isinstance(value, SourceDocument):
            if not value.name:
                return replace(value, name=f"document {index}")
            return value
        if isinstance(value, (bytes, bytearray)):
            return cls(data=bytes(value), name=f"document {index}")
        raise ValidationError(
            f"Unsupported source for document {index}",
            diagnostic=f"expected bytes or SourceDocument, found {type(value).__name__}",
        )


@dataclass
class AssemblyOutcome:
    """
    Result of one merge or reorder.

    Attributes:
        data: New serialized document
        pages: Descriptors in final order, positions renumbered 1..N
        skipped_sources: Names of additional documents that were skipped
    """
    data: bytes
    pages: List[PageDescriptor]
    skipped_sources: List[str] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)


class AssemblyEngine:
    """
    Combines and reorders pages across documents.

    Attributes:
        engine: Document engine used to parse, copy and serialize
        max_additional_documents: Upper bound on sources per merge
        min_document_bytes: Sources shorter than this are skipped
    """

    def __init__(self, engine: DocumentEngine, max_additional_documents: int = 20, min_document_bytes: int = 100):
        self.engine = engine
        self.max_additional_documents = max_additional_documents
        self.min_document_bytes = min_document_bytes

    def _rotations(self, document: PageDocument) -> List[int]:
        return [document.get_rotation(i) for i in range(document.page_count)]

    def _open_source(self, source: SourceDocument) -> Optional[PageDocument]:
        """Load one additional document, or return None (with a warning) if it must be skipped."""
        if source.content_type and 'pdf' not in source.content_type.lower():
            Print("WARNING", f"Skipping non-PDF file: {source.name} ({source.content_type})")
            return None

        if len(source.data) < self.min_document_bytes:
            Print("WARNING", f"Skipping {source.name}: {len(source.data)} bytes is too small to be a valid PDF")
            return None

        if not self.engine.looks_like_document(source.data):
            Print("WARNING", f"Skipping {source.name}: not a PDF (header {bytes(source.data[:8])!r})")
            return None

        try:
            document = self.engine.load(source.data)
        except ParseError as e:
            Print("WARNING", f"Skipping {source.name}: {e.message} ({e.diagnostic})")
            return None

        if document.page_count == 0:
            Print("WARNING", f"Skipping {source.name}: document has no pages")
            document.close()
            return None

        return document

    def _assemble(self, pages: Sequence[PageDescriptor], sources: Dict[int, PageDocument], use_buffer_index: Optional[List[int]] = None) -> bytes:
        """
        Copy pages into a new document in final order and serialize it.

        `use_buffer_index`, when given, overrides each descriptor's
        original_index as the index into its source buffer.
        """
        output = self.engine.create()
        try:
            for position, descriptor in enumerate(pages):
                index = descriptor.original_index if use_buffer_index is None else use_buffer_index[position]
                new_index = output.append_page(sources[descriptor.source_index], index)
                if descriptor.rotation is not None:
                    output.set_rotation(new_index, descriptor.rotation)
            return output.to_bytes()
        finally:
            output.close()

    def merge(self, main: bytes, additional: Sequence = (), insert_position: Union[InsertPosition, str] = InsertPosition.END) -> AssemblyOutcome:
        """
        Merge additional documents into the main document.

        Args:
            main: Main document bytes (source index 0)
            additional: Additional documents (bytes or SourceDocument), source indices 1..K
            insert_position: 'start' to prepend the additional pages, 'end' to append them

        Returns:
            AssemblyOutcome with merged bytes and renumbered descriptors

        Raises:
            ValidationError: If the position is invalid or too many sources are given
            ParseError: If the main document cannot be parsed
        """
        position = InsertPosition.coerce(insert_position)
        additional = list(additional)
        if len(additional) > self.max_additional_documents:
            raise ValidationError(
                f"Too many documents to merge: {len(additional)}",
                diagnostic=f"maximum is {self.max_additional_documents}",
            )
        sources = [SourceDocument.coerce(value, index) for index, value in enumerate(additional, 1)]

        Print("STATE", f"Merging {len(sources)} document(s) at {position.value}")

        main_document = self.engine.load(main)
        opened: Dict[int, PageDocument] = {0: main_document}
        skipped: List[str] = []
        try:
            tracker = PageIdentityTracker()
            main_pages = tracker.register_source(0, self._rotations(main_document))

            added_pages: List[PageDescriptor] = []
            for source_index, source in enumerate(sources, 1):
                document = self._open_source(source)
                if document is None:
                    skipped.append(source.name)
                    continue
                opened[source_index] = document
                added_pages.extend(tracker.register_source(source_index, self._rotations(document)))
                Print("DEBUG", f"Added {document.page_count} page(s) from {source.name}")

            if position is InsertPosition.START:
                pages = renumber(added_pages + main_pages)
            else:
                pages = renumber(main_pages + added_pages)

            data = self._assemble(pages, opened)
        finally:
            for document in opened.values():
                document.close()

        Print("SUCCESS", f"Merged document: {len(pages)} pages ({len(skipped)} source(s) skipped)")
        return AssemblyOutcome(data=data, pages=pages, skipped_sources=skipped)

    def reorder(self, data: bytes, new_order: Sequence, layout: Optional[Sequence] = None) -> AssemblyOutcome:
        """
        Rebuild a document with its pages in a new order.

        Each requested descriptor is mapped to its index in the current
        buffer. With `layout` (the descriptors describing the current
        buffer, e.g. those returned by the previous transform) the mapping
        is a direct provenance lookup. Without it, the buffer index is
        recovered by sorting all requested descriptors by
        (source_index, original_index).

        Args:
            data: Current document bytes
            new_order: Every page's descriptor, in the desired order
            layout: Optional descriptors of the current buffer order

        Returns:
            AssemblyOutcome with the reordered bytes and renumbered descriptors

        Raises:
            ValidationError: If the order is malformed or any index is out of range
            ParseError: If `data` is not a valid document
        """
        requested = [d if isinstance(d, PageDescriptor) else PageDescriptor.from_dict(d) for d in new_order]
        if not requested:
            raise ValidationError("Page order is empty")
        check_unique_ids(requested)
        requested = [
            d if d.rotation is None else replace(d, rotation=normalize_rotation(d.rotation))
            for d in requested
        ]

        if layout is not None:
            layout = [d if isinstance(d, PageDescriptor) else PageDescriptor.from_dict(d) for d in layout]
            by_provenance = layout_indices(layout)
            resolved = [by_provenance.get(d.canonical_key, -1) for d in requested]
        else:
            by_id = canonical_indices(requested)
            resolved = [by_id[d.id] for d in requested]

        Print("DEBUG", f"Resolved buffer indices (0-based): {resolved}")

        source = self.engine.load(data)
        try:
            total_pages = source.page_count
            if len(requested) != total_pages:
                raise ValidationError(
                    "Page order does not cover the document",
                    diagnostic=f"expected {total_pages} pages, received {len(requested)}",
                )

            invalid = [index for index in resolved if index < 0 or index >= total_pages]
            if invalid:
                raise ValidationError(
                    f"Invalid page indices: {', '.join(str(i) for i in invalid)}",
                    diagnostic=f"valid range is 0..{total_pages - 1}",
                )
            if len(set(resolved)) != len(resolved):
                raise ValidationError("Page order references the same page more than once")

            # Every page comes from the one source buffer, keyed 0 for _assemble
            copy_plan = [replace(d, source_index=0) for d in requested]
            output_data = self._assemble(copy_plan, {0: source}, use_buffer_index=resolved)
            final_rotations = [
                d.rotation if d.rotation is not None else source.get_rotation(index)
                for d, index in zip(requested, resolved)
            ]
        finally:
            source.close()

        pages = renumber(replace(d, rotation=rotation) for d, rotation in zip(requested, final_rotations))
        Print("SUCCESS", f"Reordered document: {len(pages)} pages")
        return AssemblyOutcome(data=output_data, pages=pages)
