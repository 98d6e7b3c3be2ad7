#!/usr/bin/env python3
"""
Functional Test for encoded document transport

Verifies size guards run before decoding and that malformed data URLs
report what was expected and what was found.
"""

import base64
import sys
from pathlib import Path

import pytest

# Add repo root to path for imports
repo_root = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(repo_root))

from errors import SizeLimitExceeded, TransportError
from processors.transport import (
    SizeLimits,
    check_raw_size,
    decode_document,
    encode_document,
    estimate_raw_mb,
)
from utilities import Print
from pdf_fixtures import make_pdf


def test_data_url_and_bare_base64_decode_to_same_bytes():
    Print("HEADER", "=== Transport: decode ===")
    data = make_pdf("T", 1)
    limits = SizeLimits()

    assert decode_document(encode_document(data), limits) == data
    assert decode_document(encode_document(data, as_data_url=True), limits) == data


def test_estimated_size_is_three_quarters_of_text():
    assert estimate_raw_mb("A" * (4 * 1024 * 1024)) == pytest.approx(3.0)


def test_oversized_payload_rejected_before_decoding():
    # Not valid base64 at all: only the size guard may have looked at it
    payload = "!" * (2 * 1024 * 1024)
    limits = SizeLimits(max_document_mb=1)

    with pytest.raises(SizeLimitExceeded) as info:
        decode_document(payload, limits)

    assert info.value.limit_mb == pytest.approx(1 / 0.75)
    assert "MB" in info.value.message


def test_encoded_ceiling_overrides_default():
    limits = SizeLimits(max_document_mb=50, max_encoded_mb=1)
    with pytest.raises(SizeLimitExceeded) as info:
        decode_document("A" * (2 * 1024 * 1024), limits)
    assert info.value.limit_mb == 1


def test_raw_ceiling():
    with pytest.raises(SizeLimitExceeded):
        check_raw_size(b"\x00" * (2 * 1024 * 1024), SizeLimits(max_document_mb=1))


@pytest.mark.parametrize("payload, expected", [
    ("data:application/pdf;base64", "no comma"),
    ("data:application/pdf;base64,", "no base64 data"),
    ("data:application/pdf,JVBERi0=", "not base64"),
])
def test_malformed_data_urls(payload, expected):
    with pytest.raises(TransportError) as info:
        decode_document(payload, SizeLimits())
    assert expected in info.value.message
    assert info.value.diagnostic.startswith("expected")


def test_invalid_base64_alphabet():
    with pytest.raises(TransportError):
        decode_document("JVBER!!!i0xLjQ=", SizeLimits())


def test_non_text_payload():
    with pytest.raises(TransportError):
        decode_document(b"%PDF-1.4", SizeLimits())


def test_encode_as_data_url():
    encoded = encode_document(b"%PDF-1.4", as_data_url=True)
    assert encoded == "data:application/pdf;base64," + base64.b64encode(b"%PDF-1.4").decode()
