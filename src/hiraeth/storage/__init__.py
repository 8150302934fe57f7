"""Blob storage backends for Hiraeth."""

from hiraeth.storage.backend import BlobStore
from hiraeth.storage.local import LocalBlobStore

__all__ = ["BlobStore", "LocalBlobStore"]
