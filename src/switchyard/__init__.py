"""Switchyard - ordered LLM backend fallback with exponential backoff."""

__version__ = "0.1.0"
