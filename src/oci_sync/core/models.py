"""
Core data models for oci-sync.

Immutable descriptors handed down from configuration, plus the small value
types exchanged between the puller, the registry client and the store.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from oci_sync.core.exceptions import ConfigurationError, CredentialError

DEFAULT_TAG = "latest"

ANNOTATION_TITLE = "org.opencontainers.image.title"
ANNOTATION_UNPACK = "io.deis.oras.content.unpack"


class ArtifactState(Enum):
    """Lifecycle states of an artifact."""

    UNCONFIGURED = "unconfigured"
    RESOLVED = "resolved"
    AUTHENTICATED = "authenticated"
    READY = "ready"


@dataclass(frozen=True)
class Credential:
    """Username/password pair for a registry."""

    username: str = ""
    password: str = ""

    @staticmethod
    def empty() -> "Credential":
        """Return the empty credential."""
        return Credential()

    @property
    def is_empty(self) -> bool:
        return not self.username and not self.password

    def __repr__(self) -> str:
        masked = "***" if self.password else ""
        return f"Credential(username={self.username!r}, password={masked!r})"


@dataclass(frozen=True)
class ArtifactDescriptor:
    """
    Immutable description of one sync target.

    Produced by the configuration layer. Validation happens on construction:
    url and path must be set, and a credential must carry both a username and
    a password or neither.
    """

    url: str
    path: Path
    interval: float = 180.0
    credential: Credential = field(default_factory=Credential.empty)
    insecure: bool = False

    def __post_init__(self):
        """Validate descriptor invariants."""
        if not self.url or not str(self.url).strip():
            raise ConfigurationError("no URL set", config_key="url")
        if self.path is None or not str(self.path).strip():
            raise ConfigurationError(
                "no path set", config_key="path", details={"url": self.url}
            )
        if not isinstance(self.path, Path):
            object.__setattr__(self, "path", Path(self.path))
        if self.interval <= 0:
            raise ConfigurationError(
                f"interval must be positive, got {self.interval}",
                config_key="interval",
            )
        cred = self.credential
        if bool(cred.username) != bool(cred.password):
            raise CredentialError(details={"url": self.url})

    @property
    def login_required(self) -> bool:
        """True iff a credential was supplied."""
        return not self.credential.is_empty


@dataclass(frozen=True)
class ResolvedCoordinates:
    """Registry host, repository path and reference (tag or digest)."""

    registry: str
    repository: str
    reference: str

    @property
    def is_digest(self) -> bool:
        return ":" in self.reference

    def __str__(self) -> str:
        sep = "@" if self.is_digest else ":"
        return f"{self.registry}/{self.repository}{sep}{self.reference}"


@dataclass(frozen=True)
class Descriptor:
    """OCI content descriptor."""

    media_type: str
    digest: str
    size: int
    annotations: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def title(self) -> str | None:
        return self.annotations.get(ANNOTATION_TITLE)

    @property
    def unpack(self) -> bool:
        return self.annotations.get(ANNOTATION_UNPACK) == "true"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Descriptor":
        """Build a descriptor from its JSON form inside a manifest."""
        try:
            return cls(
                media_type=data.get("mediaType", ""),
                digest=data["digest"],
                size=int(data["size"]),
                annotations=dict(data.get("annotations") or {}),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ValueError(f"invalid descriptor: {data!r}") from e


@dataclass(frozen=True)
class RetryDecision:
    """Classification of a transport outcome."""

    retryable: bool
    wait_hint: float | None = None
