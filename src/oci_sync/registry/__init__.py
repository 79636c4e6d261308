"""
oci-sync Registry Module.

Reference parsing, authentication helpers and the registry client that
copies artifacts into a content store.
"""

from oci_sync.registry.auth import Challenge, StaticCredential, TokenCache, parse_challenge
from oci_sync.registry.client import HttpRegistryClient, RegistryClient
from oci_sync.registry.reference import parse_reference

__all__ = [
    "Challenge",
    "HttpRegistryClient",
    "RegistryClient",
    "StaticCredential",
    "TokenCache",
    "parse_challenge",
    "parse_reference",
]
