"""
Artifact - one sync target and its lifecycle.

States:
    UNCONFIGURED -> RESOLVED -> (AUTHENTICATED) -> READY

setup() resolves the URL and builds the registry client handle, login()
installs credentials when the descriptor carries them, and prepare() runs
both and then applies the insecure (plain HTTP) switch. Once READY, pull()
performs a single pull attempt; retries belong to the Puller.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import httpx

from oci_sync.config import SyncSettings, get_settings
from oci_sync.core.context import SyncContext
from oci_sync.core.exceptions import (
    CancellationError,
    ConfigurationError,
    CredentialError,
    OciSyncError,
    RegistryResponseError,
    StoreError,
    TerminalTransportError,
    TransientTransportError,
    VerificationError,
)
from oci_sync.core.models import (
    DEFAULT_TAG,
    ArtifactDescriptor,
    ArtifactState,
    Descriptor,
    ResolvedCoordinates,
)
from oci_sync.core.policy import classify_exception
from oci_sync.registry.auth import StaticCredential, TokenCache
from oci_sync.registry.client import HttpRegistryClient, RegistryClient
from oci_sync.registry.reference import parse_reference
from oci_sync.store.file import ContentStore, FileStore

ClientFactory = Callable[[ResolvedCoordinates, SyncSettings], RegistryClient]
StoreFactory = Callable[[Path], ContentStore]


class Artifact:
    """
    Runtime state for one configured sync target.

    Owned by exactly one controller loop; nothing else mutates it, so it
    carries no locks.
    """

    def __init__(
        self,
        descriptor: ArtifactDescriptor,
        *,
        settings: SyncSettings | None = None,
        client_factory: ClientFactory | None = None,
        store_factory: StoreFactory = FileStore,
        logger: logging.Logger | None = None,
    ):
        """Initialize an unconfigured artifact from its descriptor."""
        self.descriptor = descriptor
        self._settings = settings or get_settings()
        self._client_factory = client_factory or HttpRegistryClient.for_artifact
        self._store_factory = store_factory
        self._logger = logger or logging.getLogger(__name__)

        self.state = ArtifactState.UNCONFIGURED
        self.coordinates: ResolvedCoordinates | None = None
        self.client: RegistryClient | None = None
        self.login_required = descriptor.login_required

        self.last_pull_at: datetime | None = None
        self.last_digest: str | None = None
        self.pulled = False
        self.pull_count = 0

    @property
    def url(self) -> str:
        return self.descriptor.url

    @property
    def path(self) -> Path:
        return self.descriptor.path

    @property
    def interval(self) -> float:
        return self.descriptor.interval

    @property
    def registry(self) -> str:
        return self.coordinates.registry if self.coordinates else ""

    @property
    def repository(self) -> str:
        return self.coordinates.repository if self.coordinates else ""

    @property
    def reference(self) -> str:
        return self.coordinates.reference if self.coordinates else ""

    def __str__(self) -> str:
        return str(self.coordinates) if self.coordinates else self.url

    def setup(self) -> None:
        """
        Resolve the URL into coordinates and create the registry client.

        Raises:
            ConfigurationError: If the URL cannot be parsed
        """
        coords = parse_reference(self.url)
        if not coords.reference:
            self._logger.debug(f"No reference specified for {self.url}, using {DEFAULT_TAG}")
            coords = parse_reference(f"{self.url}:{DEFAULT_TAG}")

        client = self._client_factory(coords, self._settings)
        client.warning_handler = lambda text: self._logger.warning(
            f"Repository {coords.repository}: {text}"
        )

        self.coordinates = coords
        self.client = client
        self.state = ArtifactState.RESOLVED

    def login(self) -> None:
        """
        Install the descriptor's credential on the client handle.

        No-op when no credential was configured. The registry is not
        contacted; a bad credential surfaces on the first authenticated
        request.

        Raises:
            CredentialError: If login is required but the credential is empty
        """
        if not self.login_required:
            return
        if self.client is None:
            raise ConfigurationError("artifact must be set up before login", details={"url": self.url})

        cred = self.descriptor.credential
        if cred.is_empty:
            raise CredentialError("credentials required but not provided", registry=self.registry)

        self.client.authenticate(StaticCredential(self.registry, cred), TokenCache())
        self.state = ArtifactState.AUTHENTICATED
        self._logger.info(f"Successfully logged in to {self.registry} as {cred.username}")

    def prepare(self) -> "Artifact":
        """Run setup, login when required, then apply the insecure flag."""
        self.setup()
        if self.login_required:
            self.login()
        # must follow client construction, which would reset it
        if self.descriptor.insecure:
            self.client.plain_http = True
            self._logger.warning(f"Using insecure plain HTTP connection for {self.url}")
        self.state = ArtifactState.READY
        return self

    def pull(self, ctx: SyncContext) -> Descriptor:
        """
        Perform a single pull attempt into the destination path.

        Returns:
            Root descriptor of the pulled artifact

        Raises:
            TransientTransportError: Retryable registry/network failure
            TerminalTransportError: Non-retryable registry/network failure
            VerificationError: Content missing or corrupt after copy
            StoreError: Destination store could not be opened or written
            CancellationError: ``ctx`` ended during the attempt
        """
        if self.state is not ArtifactState.READY:
            raise ConfigurationError("artifact is not prepared", details={"url": self.url})
        ctx.raise_if_done()

        coords = str(self)
        self._logger.info(f"Pulling artifact from {coords}")

        store = self._store_factory(self.path)
        try:
            try:
                desc = self.client.copy(ctx, self.reference, store)
            except (CancellationError, VerificationError, StoreError):
                raise
            except (RegistryResponseError, httpx.HTTPError, OSError) as e:
                # an in-flight request that outlived its context is a cancellation
                cancelled = ctx.err()
                if cancelled is not None:
                    raise cancelled from e
                raise self._classify(e, coords) from e

            try:
                exists = store.exists(ctx, desc)
            except CancellationError:
                raise
            except (OciSyncError, OSError) as e:
                raise VerificationError(
                    f"failed to verify artifact: {e}", digest=desc.digest, coordinates=coords
                ) from e
            if not exists:
                raise VerificationError(
                    "artifact not found after copy", digest=desc.digest, coordinates=coords
                )
        finally:
            store.close()

        self.last_pull_at = datetime.now(timezone.utc)
        self.last_digest = desc.digest
        self.pulled = True
        self.pull_count += 1
        return desc

    def status(self) -> dict[str, Any]:
        """Snapshot of the artifact's state for display."""
        return {
            "url": self.url,
            "path": str(self.path),
            "artifact": str(self),
            "state": self.state.value,
            "interval_seconds": self.interval,
            "login_required": self.login_required,
            "pulled": self.pulled,
            "pull_count": self.pull_count,
            "last_digest": self.last_digest,
            "last_pull_at": self.last_pull_at.isoformat() if self.last_pull_at else None,
        }

    @staticmethod
    def _classify(error: Exception, coords: str) -> Exception:
        decision = classify_exception(error)
        status_code = getattr(error, "status_code", None)
        error_cls = TransientTransportError if decision.retryable else TerminalTransportError
        return error_cls(
            f"failed to copy artifact: {error}",
            coordinates=coords,
            status_code=status_code,
            wait_hint=decision.wait_hint,
        )


def prepare(
    descriptor: ArtifactDescriptor,
    *,
    settings: SyncSettings | None = None,
    client_factory: ClientFactory | None = None,
    store_factory: StoreFactory = FileStore,
    logger: logging.Logger | None = None,
) -> Artifact:
    """
    Build and prepare an Artifact from a descriptor.

    Raises:
        ConfigurationError: Malformed URL
        CredentialError: Login required but credential incomplete
    """
    artifact = Artifact(
        descriptor,
        settings=settings,
        client_factory=client_factory,
        store_factory=store_factory,
        logger=logger,
    )
    return artifact.prepare()
