"""
oci-sync - keep local directories in sync with OCI artifacts.

Typical use:

    from oci_sync import ArtifactDescriptor, SyncContext, prepare, start

    artifact = prepare(ArtifactDescriptor(url="ghcr.io/acme/zones:1.2.0", path=dest))
    handle = start(SyncContext.background(), artifact)
"""

__version__ = "0.1.0"

from oci_sync.config import SyncSettings, get_settings, load_descriptors, parse_descriptor
from oci_sync.core import (
    ArtifactDescriptor,
    CancellationError,
    ConfigurationError,
    Credential,
    OciSyncError,
    PullError,
    RetryExhaustedError,
    SyncContext,
)
from oci_sync.sync import (
    Artifact,
    Puller,
    SyncController,
    SyncHandle,
    get_controller,
    prepare,
    start,
    start_all,
)

__all__ = [
    "__version__",
    "Artifact",
    "ArtifactDescriptor",
    "CancellationError",
    "ConfigurationError",
    "Credential",
    "OciSyncError",
    "PullError",
    "Puller",
    "RetryExhaustedError",
    "SyncContext",
    "SyncController",
    "SyncHandle",
    "SyncSettings",
    "get_controller",
    "get_settings",
    "load_descriptors",
    "parse_descriptor",
    "prepare",
    "start",
    "start_all",
]
