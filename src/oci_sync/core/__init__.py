"""
oci-sync Core Module.

Provides the foundational types, errors, cancellation contexts and retry
classification shared by the registry client, the store and the sync engine.
"""

__all__ = [
    "ArtifactDescriptor",
    "ArtifactState",
    "Credential",
    "Descriptor",
    "ResolvedCoordinates",
    "RetryDecision",
    "SyncContext",
    # Retry policy
    "DEFAULT_POLICY",
    "RetryPolicy",
    "classify_exception",
    "classify_outcome",
    # Exceptions
    "OciSyncError",
    "CancellationError",
    "ConfigurationError",
    "CredentialError",
    "PullError",
    "RegistryResponseError",
    "RetryExhaustedError",
    "StoreError",
    "TerminalTransportError",
    "TransientTransportError",
    "TransportError",
    "VerificationError",
]

from oci_sync.core.context import SyncContext
from oci_sync.core.exceptions import (
    CancellationError,
    ConfigurationError,
    CredentialError,
    OciSyncError,
    PullError,
    RegistryResponseError,
    RetryExhaustedError,
    StoreError,
    TerminalTransportError,
    TransientTransportError,
    TransportError,
    VerificationError,
)
from oci_sync.core.models import (
    ArtifactDescriptor,
    ArtifactState,
    Credential,
    Descriptor,
    ResolvedCoordinates,
    RetryDecision,
)
from oci_sync.core.policy import (
    DEFAULT_POLICY,
    RetryPolicy,
    classify_exception,
    classify_outcome,
)
