#!/usr/bin/env python3
"""
Pagewright v0.3: page assembly and signature placement for PDF documents.

This is the main orchestrator that wires together the document engine,
the page transforms and the signature placement store.

Architecture:
- Factory pattern for engines and storage backends (decorator registries)
- Protocol-based contracts for type safety
- Caller-owned DocumentSession instead of a process-wide document cache

Every public operation returns an OperationResult: callers always get a
success flag plus data, or an error code with a diagnostic. Transforms are
all-or-nothing; a failed call leaves the session exactly as it was.

Usage:
    from pagewright import Pagewright

    pw = Pagewright()
    pw.initialize()
    session = pw.open_document(encoded_pdf).data
    pw.rotate(session, [{'pageNumber': 2, 'rotation': 90}])
    pw.merge(session, [extra_pdf_bytes], insert_position='start')

Or from command line:
    python pagewright.py info input.pdf
    python pagewright.py rotate input.pdf output.pdf --page 2:90
"""

import json
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from engines.document import get_document_engine
from engines.storage import get_blob_store, get_record_backend
from errors import (
    OperationResult,
    PagewrightError,
    PersistenceError,
    TransportError,
)
from processors.assembly import AssemblyEngine, InsertPosition, SourceDocument
from processors.page_identity import identity_layout
from processors.rotation import RotationEngine
from processors.session import DocumentSession
from processors.transport import SizeLimits, check_raw_size, decode_document, encode_document
from signatures.store import Recipient, SignaturePlacementStore
from utilities import CPU_and_Mem_usage, Print


# CLI exit codes by error code
EXIT_CODES = {
    'validation_error': 1,
    'not_found': 1,
    'stale_version': 1,
    'parse_error': 2,
    'transport_error': 2,
    'size_limit_exceeded': 2,
    'persistence_error': 3,
}


class Pagewright:
    """
    Main orchestrator for pagewright.

    Attributes:
        config: Loaded configuration dictionary
        document_engine: Initialized document engine instance
        rotation_engine: RotationEngine bound to the document engine
        assembly_engine: AssemblyEngine bound to the document engine
        limits: Size ceilings applied to every transform input
        placements: SignaturePlacementStore over the configured record backend
        blob_store: Default BlobStore used by persist()
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize with configuration.

        Args:
            config_path: Path to config.json. If None, uses default location.
        """
        self.config = self._load_config(config_path)
        self.document_engine = None
        self.rotation_engine = None
        self.assembly_engine = None
        self.limits = None
        self.placements = None
        self.blob_store = None
        self._initialized = False

    def _load_config(self, config_path: Optional[Path]) -> dict:
        """Load configuration from JSON file."""
        if config_path is None:
            config_path = Path(__file__).parent / "config" / "config.json"
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {config_path}\n"
                f"Create config/config.json or specify path with config_path parameter."
            )

        with open(config_path) as f:
            config = json.load(f)

        Print("DEBUG", f"Loaded configuration v{config.get('version', 'unknown')}")
        return config

    def initialize(
        self,
        document_engine_name: str = "pikepdf",
        record_backend_name: Optional[str] = None,
        blob_store_name: str = "local",
    ) -> None:
        """
        Initialize engines and stores.

        This must be called before any operation.

        Args:
            document_engine_name: Name of document engine to use (default: pikepdf)
            record_backend_name: Placement record backend (default: placements.backend from config)
            blob_store_name: Default blob store for persist() (default: local)

        Raises:
            ValueError: If a named engine, backend or store is not registered
        """
        Print("STARTING", f"Initializing Pagewright v{self.config.get('version', '0.3.0')}")

        engine_config = self.config.get('document_engines', {}).get(document_engine_name, {})
        self.document_engine = get_document_engine(document_engine_name, engine_config)
        Print("SUCCESS", f"Document engine: {self.document_engine.name}")

        limits_config = self.config.get('limits', {})
        self.limits = SizeLimits.from_config(limits_config)
        self.rotation_engine = RotationEngine(self.document_engine)
        self.assembly_engine = AssemblyEngine(
            self.document_engine,
            max_additional_documents=int(limits_config.get('max_additional_documents', 20)),
            min_document_bytes=int(limits_config.get('min_document_bytes', 100)),
        )
        Print("INFO", f"Size limit: {self.limits.max_document_mb:.0f} MB raw, {self.limits.encoded_ceiling_mb:.1f} MB encoded")

        placement_config = self.config.get('placements', {})
        backend_name = record_backend_name or placement_config.get('backend', 'memory')
        backend = get_record_backend(backend_name, placement_config.get('backends', {}).get(backend_name, {}))
        self.placements = SignaturePlacementStore(backend, placement_config)
        Print("SUCCESS", f"Placement store: {backend.name}")

        blob_config = self.config.get('blob_stores', {}).get(blob_store_name, {})
        self.blob_store = get_blob_store(blob_store_name, blob_config)
        Print("SUCCESS", f"Blob store: {self.blob_store.name}")

        self._initialized = True
        Print("SUCCESS", "Pagewright initialized")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("Pagewright not initialized. Call initialize() first.")

    def _run(self, operation: str, action: Callable[[], OperationResult]) -> OperationResult:
        """Run one operation, turning pagewright errors into a failed result."""
        self._require_initialized()
        try:
            return action()
        except PagewrightError as e:
            Print("FAILURE", f"{operation} failed: {e.message}" + (f" ({e.diagnostic})" if e.diagnostic else ""))
            return OperationResult.fail(e)

    def _decode(self, payload: Union[str, bytes, bytearray], label: str) -> bytes:
        if isinstance(payload, (bytes, bytearray)):
            data = bytes(payload)
            check_raw_size(data, self.limits, label)
            return data
        return decode_document(payload, self.limits, label)

    def _finish_transform(self, session: DocumentSession, data: bytes, pages, operation: str) -> None:
        check_raw_size(data, self.limits, f"{operation} result")
        session.advance(data, pages)
        Print("DEBUG", CPU_and_Mem_usage())

    # =====================================================================
    # Documents
    # =====================================================================

    def open_document(self, payload: Union[str, bytes, bytearray], name: str = "document.pdf") -> OperationResult:
        """
        Validate and parse an uploaded document.

        Args:
            payload: Raw bytes, base64 text or a data URL

        Returns:
            OperationResult whose data is a new DocumentSession
        """
        def action():
            data = self._decode(payload, name)
            with self.document_engine.load(data) as document:
                rotations = [document.get_rotation(i) for i in range(document.page_count)]
            if not rotations:
                Print("WARNING", f"{name} has no pages")
            session = DocumentSession(
                data=data,
                pages=identity_layout(rotations),
                name=name,
                content_type=self.document_engine.content_type,
            )
            Print("SUCCESS", f"Opened {name}: {session.page_count} pages, {len(data):,} bytes")
            return OperationResult.ok(session, message=f"{session.page_count} pages")

        return self._run("open_document", action)

    def page_sizes(self, session: DocumentSession) -> OperationResult:
        """
        Displayed page sizes of the session document.

        Returns:
            OperationResult whose data maps 1-based page number to (width, height);
            90 and 270 degree pages report their width and height swapped
        """
        def action():
            return OperationResult.ok(self._page_sizes(session))

        return self._run("page_sizes", action)

    def _page_sizes(self, session: DocumentSession) -> Dict[int, Tuple[float, float]]:
        sizes = {}
        with self.document_engine.load(session.data) as document:
            for index in range(document.page_count):
                width, height = document.page_size(index)
                if document.get_rotation(index) in (90, 270):
                    width, height = height, width
                sizes[index + 1] = (width, height)
        return sizes

    def rotate(self, session: DocumentSession, rotations: Sequence, expected_etag: Optional[str] = None) -> OperationResult:
        """
        Set absolute rotations on pages of the session document.

        Args:
            rotations: {'pageNumber', 'rotation'} dicts, PageRotation objects or pairs
            expected_etag: Etag the caller last saw; stale sessions are rejected

        Returns:
            OperationResult whose data is the advanced session
        """
        def action():
            session.check_etag(expected_etag)
            outcome = self.rotation_engine.rotate(session.data, rotations)
            pages = [replace(page, rotation=rotation) for page, rotation in zip(session.pages, outcome.rotations)]
            self._finish_transform(session, outcome.data, pages, "Rotation")
            warnings = [f"Invalid page number {n} skipped" for n in outcome.skipped]
            return OperationResult.ok(session, message=f"Rotated {len(outcome.applied)} page(s)", warnings=warnings)

        return self._run("rotate", action)

    def _source_document(self, value, index: int) -> Optional[SourceDocument]:
        """Turn one merge input into a SourceDocument; undecodable text is skipped."""
        if isinstance(value, SourceDocument):
            check_raw_size(value.data, self.limits, value.name or f"document {index}")
            return value

        if isinstance(value, Mapping):
            payload = value.get('fileData', value.get('data'))
            name = value.get('name') or f"document {index}"
            content_type = value.get('contentType', value.get('type', 'application/pdf'))
        else:
            payload, name, content_type = value, f"document {index}", 'application/pdf'

        if not isinstance(payload, (str, bytes, bytearray)):
            Print("WARNING", f"Skipping {name}: no document data")
            return None
        try:
            data = self._decode(payload, name)
        except TransportError as e:
            Print("WARNING", f"Skipping {name}: {e.message}")
            return None
        return SourceDocument(data=data, name=name, content_type=content_type)

    def merge(
        self,
        session: DocumentSession,
        additional: Sequence = (),
        insert_position: Union[InsertPosition, str] = InsertPosition.END,
        expected_etag: Optional[str] = None,
    ) -> OperationResult:
        """
        Merge additional documents into the session document.

        Args:
            additional: bytes, base64 text, data URLs, SourceDocument objects or
                {'fileData', 'name', 'contentType'} dicts
            insert_position: 'start' or 'end'

        Returns:
            OperationResult whose data is the advanced session
        """
        def action():
            session.check_etag(expected_etag)
            sources = []
            skipped = []
            for index, value in enumerate(additional, 1):
                source = self._source_document(value, index)
                if source is None:
                    skipped.append(f"document {index}")
                else:
                    sources.append(source)

            outcome = self.assembly_engine.merge(session.data, sources, insert_position)
            self._finish_transform(session, outcome.data, outcome.pages, "Merge")
            warnings = [f"Skipped {name}" for name in skipped + outcome.skipped_sources]
            return OperationResult.ok(session, message=f"Merged into {outcome.page_count} pages", warnings=warnings)

        return self._run("merge", action)

    def reorder(self, session: DocumentSession, new_order: Sequence, expected_etag: Optional[str] = None) -> OperationResult:
        """
        Put the session document's pages in a new order.

        Args:
            new_order: One descriptor (PageDescriptor or wire dict) per page, in
                the desired order; a descriptor rotation is applied absolutely

        Returns:
            OperationResult whose data is the advanced session
        """
        def action():
            session.check_etag(expected_etag)
            outcome = self.assembly_engine.reorder(session.data, new_order, layout=session.pages)
            self._finish_transform(session, outcome.data, outcome.pages, "Reorder")
            return OperationResult.ok(session, message=f"Reordered {outcome.page_count} pages")

        return self._run("reorder", action)

    def persist(self, session: DocumentSession, path: Optional[str] = None, blob_store=None) -> OperationResult:
        """
        Hand the session bytes to a blob store.

        On failure the result still carries the bytes in `data`, so the
        transformed document is not lost.

        Returns:
            OperationResult whose data is {'url', 'path', 'size', 'etag'}
        """
        self._require_initialized()
        store = blob_store or self.blob_store
        path = path or f"{session.session_id}/{session.name}"
        try:
            url = store.put(path, session.data, session.content_type)
        except PersistenceError as e:
            Print("FAILURE", f"persist failed: {e.message} ({e.diagnostic})")
            return OperationResult.fail(e, data=session.data)
        except PagewrightError as e:
            Print("FAILURE", f"persist failed: {e.message}")
            return OperationResult.fail(e)

        Print("COMPLETED", f"Saved {session.name} to {url}")
        return OperationResult.ok(
            {'url': url, 'path': path, 'size': len(session.data), 'etag': session.etag},
            message=url,
        )

    def export(self, session: DocumentSession, as_data_url: bool = True) -> OperationResult:
        """Encode the session document for the wire."""
        def action():
            return OperationResult.ok(encode_document(session.data, session.content_type, as_data_url))

        return self._run("export", action)

    # =====================================================================
    # Signature placements
    # =====================================================================

    def _sizes_for(self, session: Optional[DocumentSession]):
        return self._page_sizes(session) if session is not None else None

    def _placement_result(self, outcome) -> OperationResult:
        return OperationResult.ok(outcome, message=outcome.status.value, warnings=outcome.warnings)

    def get_placements(self, document_id: str, recipient: Optional[Recipient] = None) -> OperationResult:
        """Records for one recipient, or every record on the document when recipient is None."""
        def action():
            if recipient is None or self.placements.is_all_recipients(recipient):
                return OperationResult.ok(self.placements.list_records(document_id))
            return OperationResult.ok(self.placements.get_record(document_id, recipient))

        return self._run("get_placements", action)

    def replace_placements(
        self,
        document_id: str,
        recipient: str,
        placements: Sequence[Mapping],
        session: Optional[DocumentSession] = None,
        expected_version: Optional[int] = None,
    ) -> OperationResult:
        """Replace every placement of one recipient; an empty list deletes the record."""
        return self._run("replace_placements", lambda: self._placement_result(
            self.placements.replace_all(document_id, recipient, placements, self._sizes_for(session), expected_version)
        ))

    def add_placement(
        self,
        document_id: str,
        recipient: str,
        placement: Mapping,
        session: Optional[DocumentSession] = None,
        expected_version: Optional[int] = None,
    ) -> OperationResult:
        return self._run("add_placement", lambda: self._placement_result(
            self.placements.add_one(document_id, recipient, placement, self._sizes_for(session), expected_version)
        ))

    def update_placement(
        self,
        document_id: str,
        recipient: str,
        placement_id: str,
        partial_position: Mapping,
        session: Optional[DocumentSession] = None,
        expected_version: Optional[int] = None,
    ) -> OperationResult:
        return self._run("update_placement", lambda: self._placement_result(
            self.placements.update_one(
                document_id, recipient, placement_id, partial_position, self._sizes_for(session), expected_version
            )
        ))

    def delete_placement(
        self,
        document_id: str,
        recipient: str,
        placement_id: str,
        expected_version: Optional[int] = None,
    ) -> OperationResult:
        return self._run("delete_placement", lambda: self._placement_result(
            self.placements.delete_one(document_id, recipient, placement_id, expected_version)
        ))

    def clear_placements(self, document_id: str, recipient: Recipient) -> OperationResult:
        return self._run("clear_placements", lambda: self._placement_result(
            self.placements.clear_all(document_id, recipient)
        ))


# =========================================================================
# Command line
# =========================================================================

def _parse_rotation(text: str) -> Dict[str, int]:
    """'2:90' -> {'pageNumber': 2, 'rotation': 90}"""
    import argparse
    try:
        page, rotation = text.split(':')
        return {'pageNumber': int(page), 'rotation': int(rotation)}
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected PAGE:ROTATION, got {text!r}")


def _parse_order(text: str) -> List[int]:
    """'3,1,2' -> [3, 1, 2]"""
    import argparse
    try:
        return [int(part) for part in text.split(',') if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma separated page numbers, got {text!r}")


def _open_file(pw: Pagewright, path: Path) -> OperationResult:
    if not path.exists():
        raise FileNotFoundError(f"Input PDF not found: {path}")
    return pw.open_document(path.read_bytes(), name=path.name)


def _save(pw: Pagewright, session: DocumentSession, output: Path) -> OperationResult:
    output = Path(output).resolve()
    store = get_blob_store("local", {'root': str(output.parent)})
    return pw.persist(session, output.name, blob_store=store)


def _exit_code(result: OperationResult) -> int:
    if result.success:
        return 0
    return EXIT_CODES.get(result.error, 1)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description='Pagewright v0.3: rotate, merge and reorder PDF pages',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python pagewright.py info input.pdf
  python pagewright.py rotate input.pdf output.pdf --page 2:90 --page 3:180
  python pagewright.py merge main.pdf extra1.pdf extra2.pdf -o merged.pdf --position start
  python pagewright.py reorder input.pdf output.pdf --order 3,1,2
        """
    )
    parser.add_argument('--config', type=Path, default=None, help='Path to config.json')
    subparsers = parser.add_subparsers(dest='command', required=True)

    info = subparsers.add_parser('info', help='Show page count, rotations and sizes')
    info.add_argument('input', type=Path, help='Input PDF file')

    rotate = subparsers.add_parser('rotate', help='Set absolute page rotations')
    rotate.add_argument('input', type=Path, help='Input PDF file')
    rotate.add_argument('output', type=Path, help='Output PDF file')
    rotate.add_argument('--page', dest='rotations', type=_parse_rotation, action='append', required=True,
                        metavar='PAGE:ROTATION', help='e.g. 2:90 (repeatable)')

    merge = subparsers.add_parser('merge', help='Merge documents into the main document')
    merge.add_argument('main', type=Path, help='Main PDF file')
    merge.add_argument('additional', type=Path, nargs='*', help='PDF files to add')
    merge.add_argument('-o', '--output', type=Path, required=True, help='Output PDF file')
    merge.add_argument('--position', choices=[p.value for p in InsertPosition], default='end',
                       help='Insert the additional pages at the start or end (default: end)')

    reorder = subparsers.add_parser('reorder', help='Reorder pages')
    reorder.add_argument('input', type=Path, help='Input PDF file')
    reorder.add_argument('output', type=Path, help='Output PDF file')
    reorder.add_argument('--order', type=_parse_order, required=True, help='New order as 1-based page numbers, e.g. 3,1,2')
    reorder.add_argument('--rotate', dest='rotations', type=_parse_rotation, action='append', default=[],
                         metavar='PAGE:ROTATION', help='Rotate a page (by its original number) while reordering')

    args = parser.parse_args(argv)

    try:
        pw = Pagewright(config_path=args.config)
        pw.initialize()

        result = _open_file(pw, args.input if args.command != 'merge' else args.main)
        if not result.success:
            return _exit_code(result)
        session = result.data

        if args.command == 'info':
            sizes = pw.page_sizes(session)
            if not sizes.success:
                return _exit_code(sizes)
            Print("INFO", f"{session.name}: {session.page_count} pages, {len(session.data):,} bytes, etag {session.etag[:12]}")
            for page in session.pages:
                width, height = sizes.data[page.position]
                Print("INFO", f"  page {page.position}: {width:.0f}x{height:.0f} pt, rotation {page.rotation}°")
            return 0

        if args.command == 'rotate':
            result = pw.rotate(session, args.rotations)
            output = args.output

        elif args.command == 'merge':
            extras = []
            for path in args.additional:
                if not path.exists():
                    raise FileNotFoundError(f"Input PDF not found: {path}")
                extras.append(SourceDocument(data=path.read_bytes(), name=path.name))
            result = pw.merge(session, extras, args.position)
            output = args.output

        else:
            rotations = {r['pageNumber']: r['rotation'] for r in args.rotations}
            new_order = []
            for number in args.order:
                if number < 1 or number > session.page_count:
                    Print("FAILURE", f"Page {number} out of range 1..{session.page_count}")
                    return 1
                page = session.pages[number - 1]
                new_order.append({**page.to_dict(), 'rotation': rotations.get(number, page.rotation)})
            result = pw.reorder(session, new_order)
            output = args.output

        for warning in result.warnings:
            Print("WARNING", warning)
        if not result.success:
            return _exit_code(result)

        saved = _save(pw, session, output)
        return _exit_code(saved)

    except FileNotFoundError as e:
        Print("FAILURE", str(e))
        return 1
    except ValueError as e:
        Print("FAILURE", str(e))
        return 1
    except KeyboardInterrupt:
        Print("WARNING", "Interrupted by user")
        return 130


if __name__ == "__main__":
    import sys
    sys.exit(main())
