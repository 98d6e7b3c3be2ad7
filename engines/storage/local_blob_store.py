"""
Local filesystem blob store for pagewright

Writes document bytes under a root directory and returns file:// URLs.
"""

import os
import tempfile
from pathlib import Path, PurePosixPath

from . import register_blob_store

import sys
repo_root = Path(__file__).resolve().parent.parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
from utilities import Print
from errors import PersistenceError, ValidationError


@register_blob_store("local")
class LocalBlobStoreFactory:
    """Factory for creating local blob stores."""

    @staticmethod
    def create(config: dict) -> "LocalBlobStore":
        return LocalBlobStore(config)


class LocalBlobStore:
    """
    Attributes:
        root: Directory all blobs are written under
    """

    def __init__(self, config: dict):
        self.root = Path(config.get('root', '/tmp/pagewright/blobs'))

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or '..' in relative.parts or not relative.parts:
            raise ValidationError(f"Invalid blob path: {path!r}", diagnostic="expected a relative path without '..'")
        return self.root.joinpath(*relative.parts)

    def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix='.upload-', dir=str(target.parent))
            try:
                with os.fdopen(fd, 'wb') as f:
                    f.write(data)
                os.replace(temp_path, target)
            except BaseException:
                Path(temp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Could not store {path}", diagnostic=str(e))

        Print("DEBUG", f"Stored {len(data):,} bytes ({content_type}) at {target}")
        return target.resolve().as_uri()

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as e:
            raise PersistenceError(f"Could not read {path}", diagnostic=str(e))

    @property
    def name(self) -> str:
        return "local"
