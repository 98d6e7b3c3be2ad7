"""
pikepdf-based document engine for pagewright

Loads PDF byte buffers into page-addressable documents, exposes per-page
rotation and dimensions, and copies pages between documents without
re-rendering them.

Notes on page attributes:
- /Rotate, /MediaBox, /CropBox and /Resources may be inherited from the
  page tree. They are pushed down onto each page at load time so that a
  page copied into another document keeps its effective values.
- Copied pages reference stream data in their source document until the
  target is saved, so sources must stay open until to_bytes() returns.
"""

import io
from typing import Optional, Tuple

import pikepdf
from pikepdf import Name

from . import register_document_engine

# Import utilities for logging
import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from utilities import Print
from errors import ParseError


PDF_HEADER = b'%PDF-'

# PDF readers accept junk before the header as long as it starts within 1 KB
HEADER_SEARCH_WINDOW = 1024

INHERITABLE_KEYS = (Name.Resources, Name.MediaBox, Name.CropBox, Name.Rotate)

# US Letter, used only when a page tree carries no MediaBox at all
DEFAULT_MEDIABOX = (0, 0, 612, 792)

# Guard against cyclic /Parent chains in damaged files
MAX_TREE_DEPTH = 64


def _inherited(page_dict: pikepdf.Dictionary, key: Name) -> Optional[pikepdf.Object]:
    """Look up a page attribute, walking up the page tree if needed."""
    node = page_dict
    depth = 0
    while node is not None and depth < MAX_TREE_DEPTH:
        if key in node:
            return node[key]
        node = node.get(Name.Parent)
        depth += 1
    return None


def _push_inherited(page_dict: pikepdf.Dictionary) -> None:
    """Copy inherited attributes onto the page dictionary itself."""
    parent = page_dict.get(Name.Parent)
    if parent is None:
        return
    for key in INHERITABLE_KEYS:
        if key in page_dict:
            continue
        value = _inherited(parent, key)
        if value is not None:
            page_dict[key] = value


@register_document_engine("pikepdf")
class PikePDFEngineFactory:
    """Factory for creating pikepdf engine instances."""

    @staticmethod
    def create(config: dict) -> "PikePDFEngine":
        return PikePDFEngine(config)


class PikePDFDocument:
    """
    In-memory PDF backed by a pikepdf.Pdf.

    Attributes:
        pdf: Underlying pikepdf.Pdf object
    """

    def __init__(self, pdf: pikepdf.Pdf, engine: "PikePDFEngine", buffer: Optional[io.BytesIO] = None):
        self.pdf = pdf
        self._engine = engine
        # pikepdf reads lazily from the buffer, keep it alive with the Pdf
        self._buffer = buffer

    def __enter__(self) -> "PikePDFDocument":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def page_count(self) -> int:
        return len(self.pdf.pages)

    def _page(self, index: int) -> pikepdf.Page:
        if index < 0 or index >= self.page_count:
            raise IndexError(f"Page index {index} out of range (document has {self.page_count} pages)")
        return self.pdf.pages[index]

    def get_rotation(self, index: int) -> int:
        value = _inherited(self._page(index).obj, Name.Rotate)
        if value is None:
            return 0
        return int(value) % 360

    def set_rotation(self, index: int, rotation: int) -> None:
        self._page(index).obj[Name.Rotate] = rotation

    def page_size(self, index: int) -> Tuple[float, float]:
        mediabox = _inherited(self._page(index).obj, Name.MediaBox)
        if mediabox is None:
            Print("WARNING", f"Page {index + 1} has no MediaBox, assuming US Letter")
            x0, y0, x1, y1 = DEFAULT_MEDIABOX
        else:
            x0, y0, x1, y1 = (float(v) for v in mediabox)
        return abs(x1 - x0), abs(y1 - y0)

    def append_page(self, source: "PikePDFDocument", index: int) -> int:
        self.pdf.pages.append(source._page(index))
        return self.page_count - 1

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        self.pdf.save(
            buffer,
            compress_streams=self._engine.compress_streams,
            object_stream_mode=self._engine.object_stream_mode,
            deterministic_id=True,
        )
        return buffer.getvalue()

    def close(self) -> None:
        self.pdf.close()
        self._buffer = None


class PikePDFEngine:
    """
    pikepdf implementation of the document engine.

    Attributes:
        compress_streams: Compress uncompressed streams on save
        object_stream_mode: pikepdf.ObjectStreamMode used on save
    """

    def __init__(self, config: dict):
        """
        Initialize the engine with configuration.

        Args:
            config: Configuration dictionary with optional keys:
                - compress_streams: bool (default: True)
                - object_stream_mode: 'preserve', 'disable' or 'generate' (default: 'preserve')
        """
        self.compress_streams = config.get('compress_streams', True)

        mode_name = config.get('object_stream_mode', 'preserve')
        try:
            self.object_stream_mode = getattr(pikepdf.ObjectStreamMode, mode_name)
        except AttributeError:
            raise ValueError(
                f"Unknown object_stream_mode '{mode_name}'. "
                f"Expected one of: preserve, disable, generate"
            )

        Print("DEBUG", f"Document engine initialized: pikepdf {pikepdf.__version__}, object streams={mode_name}")

    def looks_like_document(self, data: bytes) -> bool:
        return PDF_HEADER in bytes(data[:HEADER_SEARCH_WINDOW])

    def load(self, data: bytes) -> PikePDFDocument:
        if not isinstance(data, (bytes, bytearray)):
            raise ParseError(f"Expected document bytes, got {type(data).__name__}")

        if not self.looks_like_document(data):
            raise ParseError(
                "Not a PDF document",
                diagnostic=f"expected header {PDF_HEADER!r}, found {bytes(data[:8])!r}",
            )

        buffer = io.BytesIO(bytes(data))
        try:
            pdf = pikepdf.Pdf.open(buffer)
        except pikepdf.PasswordError as e:
            raise ParseError("PDF is password protected", diagnostic=str(e))
        except pikepdf.PdfError as e:
            raise ParseError("PDF is corrupt or unreadable", diagnostic=str(e))

        for page in pdf.pages:
            _push_inherited(page.obj)

        document = PikePDFDocument(pdf, self, buffer)
        Print("DEBUG", f"Loaded PDF: {document.page_count} pages, {len(data):,} bytes")
        return document

    def create(self) -> PikePDFDocument:
        return PikePDFDocument(pikepdf.Pdf.new(), self)

    @property
    def content_type(self) -> str:
        return "application/pdf"

    @property
    def name(self) -> str:
        """Engine identifier."""
        return "pikepdf"
