"""
Error taxonomy and operation results for pagewright.

Engines and stores raise the typed exceptions below. The orchestrator
(pagewright.Pagewright) converts them into OperationResult objects so
callers always receive a success flag plus data or a diagnostic.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


class PagewrightError(Exception):
    """Base class for every error raised by pagewright components."""

    code = "error"

    def __init__(self, message: str, diagnostic: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.diagnostic = diagnostic


class ValidationError(PagewrightError, ValueError):
    """Invalid page number, rotation value, page order or placement data."""

    code = "validation_error"


class SizeLimitExceeded(PagewrightError):
    """Encoded or raw document size over the configured ceiling."""

    code = "size_limit_exceeded"

    def __init__(self, message: str, size_mb: float, limit_mb: float):
        super().__init__(message, diagnostic=f"size={size_mb:.1f} MB, limit={limit_mb:.1f} MB")
        self.size_mb = size_mb
        self.limit_mb = limit_mb


class TransportError(PagewrightError):
    """Malformed encoded-document text."""

    code = "transport_error"


class ParseError(PagewrightError):
    """Bytes do not form a valid page-based document."""

    code = "parse_error"


class PersistenceError(PagewrightError):
    """
    A backing store write failed.

    When raised after a successful transform, `artifact` holds the computed
    bytes so the in-memory work is not lost.
    """

    code = "persistence_error"

    def __init__(self, message: str, diagnostic: Optional[str] = None, artifact: Optional[bytes] = None):
        super().__init__(message, diagnostic)
        self.artifact = artifact


class StaleVersionError(PagewrightError):
    """A write was based on a version that is no longer current."""

    code = "stale_version"

    def __init__(self, message: str, expected: Any, actual: Any):
        super().__init__(message, diagnostic=f"expected version {expected!r}, found {actual!r}")
        self.expected = expected
        self.actual = actual


class RecordNotFound(PagewrightError):
    """No signature record or placement matches the given key."""

    code = "not_found"


@dataclass
class OperationResult:
    """Structured outcome of one pagewright operation."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    message: str = ""
    diagnostic: Optional[str] = None
    warnings: list = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, message: str = "", warnings: Optional[list] = None) -> "OperationResult":
        return cls(success=True, data=data, message=message, warnings=list(warnings or []))

    @classmethod
    def fail(cls, exc: PagewrightError, data: Any = None) -> "OperationResult":
        return cls(
            success=False,
            data=data,
            error=exc.code,
            message=exc.message,
            diagnostic=exc.diagnostic,
        )

    def to_dict(self) -> dict:
        result = {'success': self.success, 'message': self.message}
        if self.error:
            result['error'] = self.error
        if self.diagnostic:
            result['diagnostic'] = self.diagnostic
        if self.warnings:
            result['warnings'] = list(self.warnings)
        return result
