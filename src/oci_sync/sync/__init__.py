"""
oci-sync Sync Module.

Artifact lifecycle, the retrying puller and the background controller that
keeps each artifact's destination up to date.
"""

from oci_sync.sync.artifact import Artifact, prepare
from oci_sync.sync.controller import (
    SyncController,
    SyncHandle,
    get_controller,
    start,
    start_all,
)
from oci_sync.sync.puller import Puller

__all__ = [
    "Artifact",
    "Puller",
    "SyncController",
    "SyncHandle",
    "get_controller",
    "prepare",
    "start",
    "start_all",
]
