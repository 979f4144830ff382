# filetx/utils/__init__.py
"""Utility helpers for filetx."""
from filetx.utils.logging import setup_logging, get_logger

__all__ = ["setup_logging", "get_logger"]
