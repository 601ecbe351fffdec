"""Streaming chat relay with in-band image directives."""

__version__ = "0.1.0"
