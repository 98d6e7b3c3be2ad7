"""
Storage Registry for pagewright

Factory pattern with decorator-based registration, one registry for
signature record backends and one for blob stores.

Usage:
    @register_record_backend("memory")
    class MemoryBackendFactory:
        @staticmethod
        def create(config: dict) -> RecordBackend:
            return MemoryRecordBackend(config)

    backend = get_record_backend("memory", {})
    blobs = get_blob_store("local", {"root": "/tmp/pagewright/blobs"})
"""

from typing import Dict, Callable
from .base import BlobStore, RecordBackend

# Global registries of storage factories
RECORD_BACKEND_REGISTRY: Dict[str, Callable[[dict], RecordBackend]] = {}
BLOB_STORE_REGISTRY: Dict[str, Callable[[dict], BlobStore]] = {}


def register_record_backend(name: str):
    """
    Decorator to register record backend factories.

    Args:
        name: Unique identifier for this backend
    """
    def decorator(factory_class):
        RECORD_BACKEND_REGISTRY[name] = factory_class.create
        return factory_class
    return decorator


def register_blob_store(name: str):
    """
    Decorator to register blob store factories.

    Args:
        name: Unique identifier for this store
    """
    def decorator(factory_class):
        BLOB_STORE_REGISTRY[name] = factory_class.create
        return factory_class
    return decorator


def _lookup(registry: dict, kind: str, name: str, config: dict):
    if name not in registry:
        available = ', '.join(registry.keys()) if registry else 'none'
        raise ValueError(
            f"Unknown {kind}: '{name}'. "
            f"Available {kind}s: {available}"
        )
    return registry[name](config)


def get_record_backend(name: str, config: dict) -> RecordBackend:
    """
    Get a record backend instance by name.

    Raises:
        ValueError: If backend name is not registered
    """
    return _lookup(RECORD_BACKEND_REGISTRY, "record backend", name, config)


def get_blob_store(name: str, config: dict) -> BlobStore:
    """
    Get a blob store instance by name.

    Raises:
        ValueError: If store name is not registered
    """
    return _lookup(BLOB_STORE_REGISTRY, "blob store", name, config)


# Import implementations to trigger registration
from . import memory_backend  # noqa: E402,F401
from . import json_backend  # noqa: E402,F401
from . import local_blob_store  # noqa: E402,F401

__all__ = [
    'BlobStore', 'RecordBackend',
    'register_record_backend', 'register_blob_store',
    'get_record_backend', 'get_blob_store',
]
