"""Destination content stores."""

from oci_sync.store.file import ContentStore, FileStore

__all__ = ["ContentStore", "FileStore"]
