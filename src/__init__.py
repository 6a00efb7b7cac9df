# src/__init__.py — v1
"""docdedup: two-stage document and invoice deduplication engine."""

from docdedup.version import __version__

__all__ = ["__version__"]
