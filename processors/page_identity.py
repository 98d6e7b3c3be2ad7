"""
Page identity tracking for merge and reorder.

Every page drawn into an assembled document gets a PageDescriptor that
records where it came from (source document index, original page index
in that source) separately from where it currently sits (1-based display
position). Provenance is kept as explicit fields; ids are opaque and
carry no structure.
"""

import uuid
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from errors import ValidationError


@dataclass(frozen=True)
class PageDescriptor:
    """
    Provenance of one page in an assembled document.

    Attributes:
        id: Opaque identifier, unique within one merge/reorder call
        source_index: Which source document the page came from (0 = main)
        original_index: 0-based index of the page in that source document
        position: Current 1-based display position
        rotation: Absolute rotation, or None to keep the page's current rotation
    """
    id: str
    source_index: int
    original_index: int
    position: int
    rotation: Optional[int] = None

    @property
    def canonical_key(self) -> Tuple[int, int]:
        return (self.source_index, self.original_index)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'sourceIndex': self.source_index,
            'originalIndex': self.original_index,
            'position': self.position,
            'rotation': self.rotation,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PageDescriptor":
        """Build a descriptor from its wire form (camelCase or snake_case keys)."""
        def pick(*names, default=None):
            for name in names:
                if name in data and data[name] is not None:
                    return data[name]
            return default

        descriptor_id = pick('id')
        if descriptor_id is None or not str(descriptor_id).strip():
            raise ValidationError("Malformed page descriptor", diagnostic=f"{data!r}: missing id")

        try:
            rotation = pick('rotation')
            return cls(
                id=str(descriptor_id),
                source_index=int(pick('sourceIndex', 'source_index')),
                original_index=int(pick('originalIndex', 'original_index')),
                position=int(pick('position', 'displayPosition', default=0)),
                rotation=None if rotation is None else int(rotation),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError("Malformed page descriptor", diagnostic=f"{data!r}: {e}")


class PageIdentityTracker:
    """
    Assigns descriptors to pages as they are laid into a new document.

    One tracker lives for exactly one merge or reorder call.
    """

    def __init__(self):
        self._descriptors: List[PageDescriptor] = []
        self._ids: set = set()

    def register(self, source_index: int, original_index: int, rotation: Optional[int] = None) -> PageDescriptor:
        """Create a descriptor for one source page; position is assigned by renumber()."""
        page_id = uuid.uuid4().hex
        while page_id in self._ids:
            page_id = uuid.uuid4().hex
        descriptor = PageDescriptor(
            id=page_id,
            source_index=source_index,
            original_index=original_index,
            position=0,
            rotation=rotation,
        )
        self._ids.add(page_id)
        self._descriptors.append(descriptor)
        return descriptor

    def register_source(self, source_index: int, rotations: Sequence[int]) -> List[PageDescriptor]:
        """Register every page of one source document, in source order."""
        return [
            self.register(source_index, original_index, rotation)
            for original_index, rotation in enumerate(rotations)
        ]

    @property
    def descriptors(self) -> List[PageDescriptor]:
        return list(self._descriptors)


def renumber(descriptors: Iterable[PageDescriptor]) -> List[PageDescriptor]:
    """Assign contiguous display positions 1..N in iteration order."""
    return [replace(d, position=position) for position, d in enumerate(descriptors, 1)]


def identity_layout(rotations: Sequence[int], source_index: int = 0) -> List[PageDescriptor]:
    """Descriptors for a freshly loaded document, one per page in buffer order."""
    tracker = PageIdentityTracker()
    return renumber(tracker.register_source(source_index, rotations))


def check_unique_ids(descriptors: Sequence[PageDescriptor]) -> None:
    """
    Raises:
        ValidationError: If any id appears more than once
    """
    seen = set()
    duplicates = set()
    for descriptor in descriptors:
        if descriptor.id in seen:
            duplicates.add(descriptor.id)
        seen.add(descriptor.id)
    if duplicates:
        raise ValidationError(
            "Duplicate page ids in page order",
            diagnostic=f"duplicated: {', '.join(sorted(duplicates))}",
        )


def canonical_indices(descriptors: Sequence[PageDescriptor]) -> Dict[str, int]:
    """
    Recover each page's index in the buffer it was laid into.

    Sorting every descriptor by (source_index, original_index) reproduces
    the order in which pages were laid into a buffer assembled in source
    order. O(n log n).
    """
    ordered = sorted(descriptors, key=lambda d: d.canonical_key)
    return {descriptor.id: index for index, descriptor in enumerate(ordered)}


def layout_indices(layout: Sequence[PageDescriptor]) -> Dict[Tuple[int, int], int]:
    """Map each page's provenance to its index in the buffer described by `layout`."""
    ordered = sorted(layout, key=lambda d: d.position)
    return {descriptor.canonical_key: index for index, descriptor in enumerate(ordered)}
