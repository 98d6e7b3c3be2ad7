"""
Signature image payload probing.

Signature images arrive as data URLs ("data:image/png;base64,...") or
bare base64. Pillow decodes and verifies them so a placement never
claims to be signed with an image nobody can read.
"""

import base64
import binascii
import io
from dataclasses import dataclass

from PIL import Image

import sys
from pathlib import Path
repo_root = Path(__file__).resolve().parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from errors import ValidationError


@dataclass(frozen=True)
class SignatureImage:
    """Decoded facts about a signature image."""
    format: str
    width: int
    height: int

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0


def decode_image_payload(payload: str) -> bytes:
    """
    Decode a data URL or bare base64 image payload.

    Raises:
        ValidationError: If the payload is not decodable base64
    """
    body = payload.strip()
    if body.startswith('data:'):
        header, sep, body = body.partition(',')
        if not sep or not header.endswith(';base64'):
            raise ValidationError(
                "Signature image is not a base64 data URL",
                diagnostic=f"expected 'data:image/<type>;base64,...', found {payload[:40]!r}",
            )
    try:
        return base64.b64decode(''.join(body.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Signature image is not valid base64", diagnostic=str(e))


def probe_image(payload: str) -> SignatureImage:
    """
    Decode and verify a signature image.

    Returns:
        SignatureImage with format and pixel dimensions

    Raises:
        ValidationError: If the bytes are not a readable image
    """
    raw = decode_image_payload(payload)
    try:
        with Image.open(io.BytesIO(raw)) as img:
            width, height = img.size
            image_format = img.format or 'unknown'
            img.verify()
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise ValidationError("Signature image could not be decoded", diagnostic=str(e))

    if width <= 0 or height <= 0:
        raise ValidationError("Signature image is empty", diagnostic=f"size {width}x{height}")

    return SignatureImage(format=image_format, width=width, height=height)
