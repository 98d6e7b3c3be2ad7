"""
Signature placements for pagewright

The placement aggregate, its validation rules and the store that
persists it through a RecordBackend.
"""

from .models import DocumentStatus, PlacementSource, SignaturePlacement, SignatureRecord
from .store import RecipientScope, SignaturePlacementStore, StoreOutcome
from .validation import PlacementDefaults

__all__ = [
    'DocumentStatus', 'PlacementSource', 'SignaturePlacement', 'SignatureRecord',
    'RecipientScope', 'SignaturePlacementStore', 'StoreOutcome',
    'PlacementDefaults',
]
