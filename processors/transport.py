"""
Encoded document transport for pagewright.

Documents travel over the wire as base64 text, either bare or wrapped in a
data URL ("data:application/pdf;base64,...."). Base64 inflates the payload
by roughly 4/3, so the size guard estimates the raw size from the text
length and rejects oversized payloads before anything is decoded.
"""

import base64
import binascii
from dataclasses import dataclass

# Import utilities for logging
import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from utilities import Print, megabytes
from errors import SizeLimitExceeded, TransportError


# Raw bytes per encoded character
BASE64_RATIO = 0.75

DATA_URL_PREFIX = 'data:'
BASE64_MARKER = ';base64'


@dataclass(frozen=True)
class SizeLimits:
    """
    Size ceilings applied uniformly to rotate, merge and reorder inputs.

    Attributes:
        max_document_mb: Raw document ceiling in MB
        max_encoded_mb: Encoded text ceiling in MB (defaults to raw * 4/3)
    """
    max_document_mb: float = 50.0
    max_encoded_mb: float = 0.0

    @property
    def encoded_ceiling_mb(self) -> float:
        if self.max_encoded_mb > 0:
            return self.max_encoded_mb
        return self.max_document_mb / BASE64_RATIO

    @classmethod
    def from_config(cls, config: dict) -> "SizeLimits":
        return cls(
            max_document_mb=float(config.get('max_document_mb', 50)),
            max_encoded_mb=float(config.get('max_encoded_mb', 0)),
        )


def estimate_raw_mb(encoded: str) -> float:
    """Estimate the decoded size of a base64 payload in MB."""
    return megabytes(len(encoded) * BASE64_RATIO)


def check_encoded_size(encoded: str, limits: SizeLimits, label: str = "Document") -> None:
    """
    Reject an encoded payload whose text or estimated raw size is too large.

    Raises:
        SizeLimitExceeded: Before any decoding is attempted
    """
    encoded_mb = megabytes(len(encoded))
    estimated_mb = estimate_raw_mb(encoded)
    Print("INFO", f"{label}: encoded {encoded_mb:.2f} MB, estimated raw {estimated_mb:.2f} MB")

    if encoded_mb > limits.encoded_ceiling_mb:
        raise SizeLimitExceeded(
            f"{label} too large ({encoded_mb:.1f} MB encoded). "
            f"Maximum: {limits.encoded_ceiling_mb:.1f} MB encoded",
            size_mb=encoded_mb,
            limit_mb=limits.encoded_ceiling_mb,
        )
    if estimated_mb > limits.max_document_mb:
        raise SizeLimitExceeded(
            f"{label} too large ({estimated_mb:.1f} MB). Maximum: {limits.max_document_mb:.0f} MB",
            size_mb=estimated_mb,
            limit_mb=limits.max_document_mb,
        )


def check_raw_size(data: bytes, limits: SizeLimits, label: str = "Document") -> None:
    """
    Reject a raw byte buffer over the configured ceiling.

    Raises:
        SizeLimitExceeded: If the buffer is larger than max_document_mb
    """
    size_mb = megabytes(len(data))
    if size_mb > limits.max_document_mb:
        raise SizeLimitExceeded(
            f"{label} too large ({size_mb:.1f} MB). Maximum: {limits.max_document_mb:.0f} MB",
            size_mb=size_mb,
            limit_mb=limits.max_document_mb,
        )


def strip_data_url(payload: str) -> str:
    """
    Return the base64 portion of a data URL, or the payload unchanged.

    Raises:
        TransportError: If a data URL is missing its comma, base64 marker or payload
    """
    if not payload.startswith(DATA_URL_PREFIX):
        return payload

    if ',' not in payload:
        raise TransportError(
            "Invalid data URL format: no comma found",
            diagnostic=f"expected 'data:<type>;base64,<payload>', found {payload[:50]!r}",
        )

    header, _, body = payload.partition(',')
    if not header.endswith(BASE64_MARKER):
        raise TransportError(
            "Invalid data URL format: payload is not base64 encoded",
            diagnostic=f"expected header ending in {BASE64_MARKER!r}, found {header[:50]!r}",
        )
    if not body:
        raise TransportError(
            "Invalid data URL format: no base64 data after comma",
            diagnostic=f"expected payload after {header!r}, found nothing",
        )
    return body


def decode_document(payload: str, limits: SizeLimits, label: str = "Document") -> bytes:
    """
    Decode an encoded document after checking its size.

    Args:
        payload: Base64 text or data URL
        limits: Size ceilings
        label: Name used in messages

    Returns:
        Raw document bytes

    Raises:
        SizeLimitExceeded: If the payload is over the ceiling
        TransportError: If the payload is not valid base64 / data URL text
    """
    if not isinstance(payload, str):
        raise TransportError(
            f"{label} must be base64 text",
            diagnostic=f"expected str, found {type(payload).__name__}",
        )

    # Size check runs on the whole payload, before any slicing or decoding
    check_encoded_size(payload, limits, label)

    body = ''.join(strip_data_url(payload.strip()).split())
    try:
        data = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise TransportError(
            f"{label} is not valid base64",
            diagnostic=f"expected base64 alphabet, decoder reported: {e}",
        )

    check_raw_size(data, limits, label)
    Print("DEBUG", f"{label}: decoded {len(data):,} bytes")
    return data


def encode_document(data: bytes, content_type: str = "application/pdf", as_data_url: bool = False) -> str:
    """Encode document bytes as base64 text, optionally wrapped in a data URL."""
    encoded = base64.b64encode(data).decode('ascii')
    if as_data_url:
        return f"{DATA_URL_PREFIX}{content_type}{BASE64_MARKER},{encoded}"
    return encoded
