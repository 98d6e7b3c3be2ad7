"""
Document engines for pagewright.

An engine turns PDF bytes into a PageDocument and back. Engines register
themselves by name; the orchestrator picks one from its configuration:

    engine = get_document_engine("pikepdf", config['document_engines']['pikepdf'])
"""

from typing import Dict, Callable
from .base import DocumentEngine, PageDocument

# name -> factory(config) -> DocumentEngine
DOCUMENT_REGISTRY: Dict[str, Callable[[dict], DocumentEngine]] = {}


def register_document_engine(name: str):
    """Class decorator; the class must provide a static create(config)."""
    def decorator(factory_class):
        DOCUMENT_REGISTRY[name] = factory_class.create
        return factory_class
    return decorator


def get_document_engine(name: str, config: dict) -> DocumentEngine:
    """
    Build the document engine registered under `name`.

    Raises:
        ValueError: If no engine is registered under that name
    """
    try:
        factory = DOCUMENT_REGISTRY[name]
    except KeyError:
        known = ', '.join(sorted(DOCUMENT_REGISTRY)) or 'none'
        raise ValueError(f"Unknown document engine '{name}' (registered: {known})")
    return factory(config)


# Registration happens on import
from . import pikepdf_engine  # noqa: E402,F401

__all__ = ['DocumentEngine', 'PageDocument', 'register_document_engine', 'get_document_engine']
