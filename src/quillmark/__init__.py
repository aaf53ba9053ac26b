"""Quillmark: anchored writing suggestions for live rich-text documents."""

__version__ = "0.1.0"

__all__ = ["__version__"]
