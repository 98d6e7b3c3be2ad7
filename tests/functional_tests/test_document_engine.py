#!/usr/bin/env python3
"""
Functional Test for the pikepdf Document Engine

Verifies:
1. PDFs load with the right page count, rotations and sizes
2. Attributes inherited from the page tree are visible per page
3. Non-PDF and corrupt buffers fail with ParseError
4. Pages copied into a new document keep their content
"""

import sys
from pathlib import Path

import pytest

# Add repo root to path for imports
repo_root = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(repo_root))

from engines.document import get_document_engine
from errors import ParseError
from utilities import Print
from pdf_fixtures import make_inherited_pdf, make_pdf, page_markers, page_rotations


def test_load_reports_pages_rotations_and_sizes(engine):
    Print("HEADER", "=== Document engine: load ===")
    data = make_pdf("P", 3, rotations=[0, 90, 270], size=(300, 500))

    with engine.load(data) as document:
        assert document.page_count == 3
        assert [document.get_rotation(i) for i in range(3)] == [0, 90, 270]
        assert document.page_size(0) == (300, 500)


def test_inherited_attributes_are_pushed_onto_pages(engine):
    Print("HEADER", "=== Document engine: inherited attributes ===")
    data = make_inherited_pdf("I", 2, rotation=180, mediabox=[0, 0, 400, 600])

    with engine.load(data) as document:
        assert document.get_rotation(1) == 180
        assert document.page_size(1) == (400, 600)

        output = engine.create()
        try:
            output.append_page(document, 1)
            copied = output.to_bytes()
        finally:
            output.close()

    assert page_rotations(copied) == [180]
    assert page_markers(copied) == ["I2"]


def test_rejects_non_pdf_bytes(engine):
    with pytest.raises(ParseError) as info:
        engine.load(b"GIF89a" + b"\x00" * 200)
    assert "%PDF-" in info.value.diagnostic


def test_rejects_corrupt_pdf(engine):
    with pytest.raises(ParseError):
        engine.load(b"%PDF-1.7\n" + b"this is not a pdf body\n" * 20)


def test_rejects_non_bytes(engine):
    with pytest.raises(ParseError):
        engine.load("%PDF-1.7 not bytes")


def test_unknown_engine_and_stream_mode():
    with pytest.raises(ValueError):
        get_document_engine("nonexistent", {})
    with pytest.raises(ValueError):
        get_document_engine("pikepdf", {'object_stream_mode': 'bogus'})


def test_serialization_does_not_touch_input(engine):
    data = make_pdf("S", 2)
    snapshot = bytes(data)

    with engine.load(data) as document:
        document.set_rotation(0, 90)
        rotated = document.to_bytes()

    assert data == snapshot
    assert page_rotations(rotated) == [90, 0]
    assert page_rotations(data) == [0, 0]
