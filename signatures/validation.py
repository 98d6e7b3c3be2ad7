"""
Validation and normalisation of incoming signature placements.

Incoming placements are wire dicts (camelCase, as the editor sends them,
optionally with the geometry nested under "position"). Rules:

- Image data is mandatory. A placement without it is invalid and is
  never stored as signed.
- Geometry fields that are missing or not finite fall back to defaults.
- When page sizes are known, a placement on a page outside them is
  invalid.
- When the page size is known, relative coordinates are derived from the
  absolute ones. Otherwise the supplied relatives are used and clamped
  to [0, 1].
"""

import math
import uuid
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from utilities import Print
from errors import ValidationError
from signatures.models import PlacementSource, SignaturePlacement, utc_now_iso
from signatures.signature_image import probe_image


# page number -> (width, height) in the same units as absolute coordinates
PageSizes = Dict[int, Tuple[float, float]]

ABSOLUTE_FIELDS = ('x', 'y', 'width', 'height')
RELATIVE_FIELDS = {
    'relativeX': 'relative_x',
    'relativeY': 'relative_y',
    'relativeWidth': 'relative_width',
    'relativeHeight': 'relative_height',
}
POSITION_FIELDS = ('page',) + ABSOLUTE_FIELDS + tuple(RELATIVE_FIELDS)


@dataclass(frozen=True)
class PlacementDefaults:
    """Fallbacks for missing or non-finite geometry."""
    page: int = 1
    x: float = 0.0
    y: float = 0.0
    width: float = 120.0
    height: float = 60.0
    relative_x: float = 0.0
    relative_y: float = 0.0
    relative_width: float = 0.2
    relative_height: float = 0.08
    min_image_data_length: int = 10

    @classmethod
    def from_config(cls, config: dict) -> "PlacementDefaults":
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in config.items() if k in known})


def _is_finite_number(value) -> bool:
    return not isinstance(value, bool) and isinstance(value, (int, float)) and math.isfinite(value)


def _finite_or(value, fallback: float, label: str, placement_id: str) -> float:
    if _is_finite_number(value):
        return float(value)
    if value is not None:
        Print("WARNING", f"Placement {placement_id}: {label}={value!r} is not finite, using {fallback}")
    return float(fallback)


def _clamp_unit(value: float, label: str, placement_id: str) -> float:
    clamped = min(1.0, max(0.0, value))
    if clamped != value:
        Print("WARNING", f"Placement {placement_id}: {label}={value} outside [0, 1], clamped to {clamped}")
    return clamped


def _flatten(raw: Mapping) -> dict:
    """Merge a nested "position" dict into the top level (top-level keys win)."""
    flat = {}
    position = raw.get('position')
    if isinstance(position, Mapping):
        flat.update(position)
    flat.update({k: v for k, v in raw.items() if k != 'position'})
    for camel, snake in RELATIVE_FIELDS.items():
        if camel not in flat and snake in flat:
            flat[camel] = flat[snake]
    return flat


def derive_relative(x: float, y: float, width: float, height: float, page_size: Tuple[float, float]) -> Tuple[float, float, float, float]:
    """Relative coordinates of an absolute rectangle on a page of the given size."""
    page_width, page_height = page_size
    if page_width <= 0 or page_height <= 0:
        raise ValidationError("Page size must be positive", diagnostic=f"got {page_width}x{page_height}")
    return (x / page_width, y / page_height, width / page_width, height / page_height)


def normalize_placement(
    raw: Mapping,
    defaults: PlacementDefaults = PlacementDefaults(),
    page_sizes: Optional[PageSizes] = None,
    probe_images: bool = True,
) -> SignaturePlacement:
    """
    Validate one incoming placement and fill in safe fallbacks.

    Raises:
        ValidationError: If image data is missing/unreadable, the source is unknown,
            or the page is not among page_sizes
    """
    if isinstance(raw, SignaturePlacement):
        raw = raw.to_dict()
    if not isinstance(raw, Mapping):
        raise ValidationError("Placement must be an object", diagnostic=f"found {type(raw).__name__}")

    data = _flatten(raw)
    placement_id = str(data.get('id') or uuid.uuid4())

    image_data = data.get('imageData') or data.get('dataUrl') or data.get('image_data')
    if not isinstance(image_data, str) or len(image_data) < defaults.min_image_data_length:
        raise ValidationError(f"Placement {placement_id} is missing image data")
    if probe_images:
        image = probe_image(image_data)
        Print("DEBUG", f"Placement {placement_id}: {image.format} image {image.width}x{image.height}")

    source_value = data.get('source') or data.get('signatureSource') or PlacementSource.CANVAS.value
    try:
        source = PlacementSource(source_value)
    except ValueError:
        raise ValidationError(
            f"Placement {placement_id} has unknown source {source_value!r}",
            diagnostic=f"expected one of: {', '.join(s.value for s in PlacementSource)}",
        )

    page_value = data.get('page')
    if _is_finite_number(page_value) and float(page_value).is_integer() and page_value >= 1:
        page = int(page_value)
    else:
        if page_value is not None:
            Print("WARNING", f"Placement {placement_id}: page={page_value!r} is invalid, using {defaults.page}")
        page = defaults.page

    if page_sizes and page not in page_sizes:
        raise ValidationError(
            f"Placement {placement_id} is on page {page}, which the document does not have",
            diagnostic=f"pages: {', '.join(str(p) for p in sorted(page_sizes))}",
        )

    x = _finite_or(data.get('x'), defaults.x, 'x', placement_id)
    y = _finite_or(data.get('y'), defaults.y, 'y', placement_id)
    width = _finite_or(data.get('width'), defaults.width, 'width', placement_id)
    height = _finite_or(data.get('height'), defaults.height, 'height', placement_id)
    if width <= 0:
        Print("WARNING", f"Placement {placement_id}: width={width} is not positive, using {defaults.width}")
        width = float(defaults.width)
    if height <= 0:
        Print("WARNING", f"Placement {placement_id}: height={height} is not positive, using {defaults.height}")
        height = float(defaults.height)

    if page_sizes:
        relative = derive_relative(x, y, width, height, page_sizes[page])
    else:
        relative = (
            _finite_or(data.get('relativeX'), defaults.relative_x, 'relativeX', placement_id),
            _finite_or(data.get('relativeY'), defaults.relative_y, 'relativeY', placement_id),
            _finite_or(data.get('relativeWidth'), defaults.relative_width, 'relativeWidth', placement_id),
            _finite_or(data.get('relativeHeight'), defaults.relative_height, 'relativeHeight', placement_id),
        )
    relative_x, relative_y, relative_width, relative_height = (
        _clamp_unit(value, label, placement_id)
        for value, label in zip(relative, RELATIVE_FIELDS)
    )

    content = data.get('content')
    timestamp = data.get('timestamp')

    return SignaturePlacement(
        id=placement_id,
        page=page,
        x=x,
        y=y,
        width=width,
        height=height,
        relative_x=relative_x,
        relative_y=relative_y,
        relative_width=relative_width,
        relative_height=relative_height,
        image_data=image_data,
        source=source,
        timestamp=timestamp if isinstance(timestamp, str) and timestamp else utc_now_iso(),
        content=None if content is None else str(content),
    )


def filter_valid_placements(
    raws: Sequence,
    defaults: PlacementDefaults = PlacementDefaults(),
    page_sizes: Optional[PageSizes] = None,
    probe_images: bool = True,
) -> Tuple[List[SignaturePlacement], List[str]]:
    """
    Normalise a batch of placements, dropping the invalid ones.

    Returns:
        (valid placements, one warning per dropped placement)
    """
    valid: List[SignaturePlacement] = []
    dropped: List[str] = []
    seen_ids = set()

    for position, raw in enumerate(raws, 1):
        try:
            placement = normalize_placement(raw, defaults, page_sizes, probe_images)
        except ValidationError as e:
            warning = f"Placement #{position} dropped: {e.message}"
            Print("WARNING", warning)
            dropped.append(warning)
            continue

        if placement.id in seen_ids:
            warning = f"Placement #{position} dropped: duplicate id {placement.id}"
            Print("WARNING", warning)
            dropped.append(warning)
            continue

        seen_ids.add(placement.id)
        valid.append(placement)

    return valid, dropped


def apply_position_update(
    placement: SignaturePlacement,
    partial: Mapping,
    page_sizes: Optional[PageSizes] = None,
) -> SignaturePlacement:
    """
    Merge partial position fields into a placement.

    Only page and geometry may change; image, source, timestamp and
    content are left as they are. When the page size is known and the
    update moves or resizes the absolute rectangle without giving new
    relatives, the relatives are derived again.

    Raises:
        ValidationError: On unknown fields or non-finite / out-of-range values
    """
    partial = _flatten(partial)
    for snake in RELATIVE_FIELDS.values():
        partial.pop(snake, None)

    unknown = sorted(set(partial) - set(POSITION_FIELDS))
    if unknown:
        raise ValidationError(
            "Position update contains unknown fields",
            diagnostic=f"unknown: {', '.join(unknown)}; allowed: {', '.join(POSITION_FIELDS)}",
        )
    if not partial:
        raise ValidationError("Position update is empty")

    for key, value in partial.items():
        if not _is_finite_number(value):
            raise ValidationError(f"Position field {key}={value!r} is not a finite number")

    updated = dict(
        page=placement.page,
        x=placement.x, y=placement.y, width=placement.width, height=placement.height,
        relative_x=placement.relative_x, relative_y=placement.relative_y,
        relative_width=placement.relative_width, relative_height=placement.relative_height,
    )

    if 'page' in partial:
        if not float(partial['page']).is_integer() or partial['page'] < 1:
            raise ValidationError(f"Invalid page {partial['page']!r}", diagnostic="expected an integer >= 1")
        updated['page'] = int(partial['page'])
    if page_sizes and updated['page'] not in page_sizes:
        raise ValidationError(
            f"Page {updated['page']} does not exist in the document",
            diagnostic=f"pages: {', '.join(str(p) for p in sorted(page_sizes))}",
        )

    for key in ABSOLUTE_FIELDS:
        if key in partial:
            updated[key] = float(partial[key])
    if updated['width'] <= 0 or updated['height'] <= 0:
        raise ValidationError("Width and height must be positive")

    for camel, snake in RELATIVE_FIELDS.items():
        if camel in partial:
            value = float(partial[camel])
            if value < 0 or value > 1:
                raise ValidationError(f"{camel}={value} outside [0, 1]")
            updated[snake] = value

    moved = any(key in partial for key in ABSOLUTE_FIELDS + ('page',))
    relatives_given = any(camel in partial for camel in RELATIVE_FIELDS)
    if moved and not relatives_given and page_sizes:
        derived = derive_relative(updated['x'], updated['y'], updated['width'], updated['height'], page_sizes[updated['page']])
        for (camel, snake), value in zip(RELATIVE_FIELDS.items(), derived):
            updated[snake] = _clamp_unit(value, camel, placement.id)

    return SignaturePlacement(
        id=placement.id,
        image_data=placement.image_data,
        source=placement.source,
        timestamp=placement.timestamp,
        content=placement.content,
        **updated,
    )
