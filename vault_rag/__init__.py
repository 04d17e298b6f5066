"""Retrieval-augmented question answering over a personal note vault."""

__version__ = "0.1.0"
