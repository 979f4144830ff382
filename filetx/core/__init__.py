# filetx/core/__init__.py
"""Service wiring for filetx."""
from filetx.core.registry import ServiceRegistry, registry

__all__ = ["ServiceRegistry", "registry"]
