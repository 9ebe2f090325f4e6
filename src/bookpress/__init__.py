"""Bookpress: queue-driven book-to-PDF conversion workers."""

__version__ = "0.3.0"
