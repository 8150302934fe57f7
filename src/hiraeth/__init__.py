"""Hiraeth: temporary, link-shareable file storage."""

__version__ = "0.1.0"
