"""
Page transforms for pagewright

Rotation, merge and reorder over page-based documents, plus the
transport guard and session handle they share.
"""

from .assembly import AssemblyEngine, AssemblyOutcome, InsertPosition, SourceDocument
from .page_identity import PageDescriptor, PageIdentityTracker
from .rotation import PageRotation, RotationEngine, RotationOutcome
from .session import DocumentSession

__all__ = [
    'AssemblyEngine', 'AssemblyOutcome', 'InsertPosition', 'SourceDocument',
    'PageDescriptor', 'PageIdentityTracker',
    'PageRotation', 'RotationEngine', 'RotationOutcome',
    'DocumentSession',
]
