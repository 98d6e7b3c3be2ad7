"""
Rotation engine for pagewright.

Rotation values are ABSOLUTE targets: rotating page 2 to 90 and then to
180 leaves it at 180, and repeating a request is a no-op. Page numbers
are 1-based; numbers outside the document are skipped with a warning
while the rest of the batch still applies.
"""

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple, Union

import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from utilities import Print
from errors import ValidationError
from engines.document import DocumentEngine


VALID_ROTATIONS = (0, 90, 180, 270)


def _as_int(value, what: str) -> int:
    """Accept ints and integral floats; reject bools, strings and fractions."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Invalid {what}: {value!r}", diagnostic=f"expected an integer, found {type(value).__name__}")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"Invalid {what}: {value!r}", diagnostic="expected a whole number")
    return int(value)


def normalize_rotation(value) -> int:
    """
    Normalise a rotation to one of 0, 90, 180, 270.

    Negative and >= 360 values are reduced modulo 360 (-90 -> 270).

    Raises:
        ValidationError: If the value is not a multiple of 90
    """
    target = _as_int(value, "rotation") % 360
    if target not in VALID_ROTATIONS:
        raise ValidationError(
            f"Invalid rotation: {value!r}",
            diagnostic=f"expected a multiple of 90 ({', '.join(str(r) for r in VALID_ROTATIONS)})",
        )
    return target


@dataclass(frozen=True)
class PageRotation:
    """One rotation request: set page `page_number` (1-based) to `rotation` degrees."""
    page_number: int
    rotation: int

    @classmethod
    def coerce(cls, value: Union["PageRotation", dict, Tuple[int, int]]) -> "PageRotation":
        """Validate a request given as a PageRotation, a wire dict or a (page, rotation) pair."""
        if isinstance(value, PageRotation):
            page_number, rotation = value.page_number, value.rotation
        elif isinstance(value, dict):
            page_number = value.get('pageNumber', value.get('page_number'))
            rotation = value.get('rotation')
        elif isinstance(value, (tuple, list)) and len(value) == 2:
            page_number, rotation = value
        else:
            raise ValidationError("Malformed rotation request", diagnostic=f"{value!r}")

        if page_number is None or rotation is None:
            raise ValidationError("Rotation request needs pageNumber and rotation", diagnostic=f"{value!r}")

        return cls(
            page_number=_as_int(page_number, "page number"),
            rotation=normalize_rotation(rotation),
        )


@dataclass
class RotationOutcome:
    """
    Result of one rotate() call.

    Attributes:
        data: New serialized document
        page_count: Number of pages in the document
        applied: (page_number, rotation) pairs that were applied
        skipped: Page numbers skipped as out of range
        rotations: Final absolute rotation of every page, in page order
    """
    data: bytes
    page_count: int
    applied: List[Tuple[int, int]] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    rotations: List[int] = field(default_factory=list)


class RotationEngine:
    """
    Applies absolute target rotations to pages of a document.

    Attributes:
        engine: Document engine used to parse and serialize
    """

    def __init__(self, engine: DocumentEngine):
        self.engine = engine

    def rotate(self, data: bytes, rotations: Sequence) -> RotationOutcome:
        """
        Rotate pages and return a new document.

        Every request is validated before the document is touched, so a bad
        rotation value aborts the whole call.

        Args:
            data: Source document bytes (never modified)
            rotations: PageRotation objects, {'pageNumber', 'rotation'} dicts or pairs

        Returns:
            RotationOutcome with the new bytes

        Raises:
            ValidationError: If any request is malformed
            ParseError: If `data` is not a valid document
        """
        requests = [PageRotation.coerce(r) for r in rotations]

        document = self.engine.load(data)
        try:
            page_count = document.page_count
            outcome = RotationOutcome(data=b'', page_count=page_count)

            for request in requests:
                if request.page_number < 1 or request.page_number > page_count:
                    Print("WARNING", f"Invalid page number {request.page_number} for document with {page_count} pages, skipping")
                    outcome.skipped.append(request.page_number)
                    continue

                index = request.page_number - 1
                current = document.get_rotation(index)
                document.set_rotation(index, request.rotation)
                outcome.applied.append((request.page_number, request.rotation))
                Print("DEBUG", f"Page {request.page_number}: rotation {current}° -> {request.rotation}°")

            outcome.rotations = [document.get_rotation(i) for i in range(page_count)]
            outcome.data = document.to_bytes()
        finally:
            document.close()

        Print("SUCCESS", f"Rotated {len(outcome.applied)} page(s), skipped {len(outcome.skipped)}")
        return outcome
