"""
Registry Client - pulls OCI artifacts over the distribution API.

The sync engine only needs one capability from a registry: copy the graph
rooted at a reference into a content store and report the root descriptor.
RegistryClient is that contract; HttpRegistryClient implements it on httpx.

Pull walk (children before parents, so the root manifest lands last):
- index: every child manifest
- manifest: config blob and every layer blob
"""

import base64
import hashlib
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Callable, Iterator

import httpx

from oci_sync.core.context import SyncContext
from oci_sync.core.exceptions import RegistryResponseError
from oci_sync.core.models import Credential, Descriptor, ResolvedCoordinates
from oci_sync.core.policy import DEFAULT_POLICY, RetryPolicy
from oci_sync.registry.auth import (
    Challenge,
    StaticCredential,
    TokenCache,
    parse_challenge,
    pull_scope,
)
from oci_sync.store.file import ContentStore

logger = logging.getLogger(__name__)

MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_DOCKER_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

MANIFEST_MEDIA_TYPES = (
    MEDIA_TYPE_OCI_MANIFEST,
    MEDIA_TYPE_OCI_INDEX,
    MEDIA_TYPE_DOCKER_MANIFEST,
    MEDIA_TYPE_DOCKER_LIST,
)
INDEX_MEDIA_TYPES = frozenset({MEDIA_TYPE_OCI_INDEX, MEDIA_TYPE_DOCKER_LIST})

CHUNK_SIZE = 64 * 1024

_WARNING_RE = re.compile(r'^\s*299\s+\S+\s+"(.*)"')

WarningHandler = Callable[[str], None]


class RegistryClient(ABC):
    """Handle on one remote repository."""

    plain_http: bool = False
    warning_handler: WarningHandler | None = None

    @abstractmethod
    def authenticate(self, credential: StaticCredential, cache: TokenCache) -> None:
        """Install a credential and token cache; does not contact the registry."""

    @abstractmethod
    def copy(self, ctx: SyncContext, reference: str, store: ContentStore) -> Descriptor:
        """Copy the artifact at ``reference`` into ``store`` and return its root descriptor."""

    def close(self) -> None:
        """Release connections held by the client."""


class HttpRegistryClient(RegistryClient):
    """
    OCI distribution client built on httpx.

    Each request is retried according to ``policy`` (request level). Whole
    pull attempts are retried separately by the Puller.
    """

    def __init__(
        self,
        coordinates: ResolvedCoordinates,
        *,
        policy: RetryPolicy | None = None,
        timeout: float = 30.0,
        login_timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize a client for one repository.

        Args:
            coordinates: Registry, repository and reference to pull from
            policy: Request-level retry policy
            timeout: Per-request timeout in seconds, further bounded by the context
            login_timeout: Timeout for token requests to the auth realm
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self._coords = coordinates
        self._policy = policy or DEFAULT_POLICY
        self._timeout = timeout
        self._login_timeout = login_timeout
        self._transport = transport
        self._credential = StaticCredential(coordinates.registry, Credential.empty())
        self._cache = TokenCache()
        self._http: httpx.Client | None = None
        self.plain_http = False
        self.warning_handler = None

    @classmethod
    def for_artifact(cls, coordinates: ResolvedCoordinates, settings) -> "HttpRegistryClient":
        """Client factory used by Artifact.setup."""
        return cls(
            coordinates,
            policy=settings.retry_policy(),
            timeout=settings.request_timeout,
            login_timeout=settings.login_timeout,
        )

    @property
    def coordinates(self) -> ResolvedCoordinates:
        return self._coords

    @property
    def base_url(self) -> str:
        scheme = "http" if self.plain_http else "https"
        return f"{scheme}://{self._coords.registry}/v2/{self._coords.repository}"

    def authenticate(self, credential: StaticCredential, cache: TokenCache) -> None:
        self._credential = credential
        self._cache = cache

    def copy(self, ctx: SyncContext, reference: str, store: ContentStore) -> Descriptor:
        ctx.raise_if_done()
        root, body = self._fetch_manifest(ctx, reference)
        self._copy_manifest(ctx, root, body, store)
        store.tag(root, reference)
        return root

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    def _copy_manifest(
        self, ctx: SyncContext, desc: Descriptor, body: bytes, store: ContentStore
    ) -> None:
        manifest = _parse_manifest(desc.digest, body)

        try:
            if desc.media_type in INDEX_MEDIA_TYPES or "manifests" in manifest:
                children = [Descriptor.from_dict(item) for item in _entries(manifest, "manifests")]
                blobs = []
            else:
                children = []
                blobs = [Descriptor.from_dict(manifest["config"])] if manifest.get("config") else []
                blobs.extend(Descriptor.from_dict(layer) for layer in _entries(manifest, "layers"))
        except ValueError as e:
            raise RegistryResponseError(
                f"invalid manifest {desc.digest}: {e}", status_code=200
            ) from e

        for child in children:
            if store.exists(ctx, child):
                continue
            _, child_body = self._fetch_manifest(ctx, child.digest)
            self._copy_manifest(ctx, child, child_body, store)
        for blob in blobs:
            if not store.exists(ctx, blob):
                self._copy_blob(ctx, blob, store)

        store.push(desc, [body])

    def _fetch_manifest(self, ctx: SyncContext, reference: str) -> tuple[Descriptor, bytes]:
        response = self._request(
            ctx,
            "GET",
            f"/manifests/{reference}",
            headers={"Accept": ", ".join(MANIFEST_MEDIA_TYPES)},
        )
        body = response.content
        media_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not media_type or media_type == "application/json":
            media_type = _parse_manifest(reference, body).get("mediaType", "") or media_type

        if ":" in reference:
            digest = reference
        else:
            digest = response.headers.get("docker-content-digest") or (
                "sha256:" + hashlib.sha256(body).hexdigest()
            )

        return Descriptor(media_type=media_type, digest=digest, size=len(body)), body

    def _copy_blob(self, ctx: SyncContext, desc: Descriptor, store: ContentStore) -> None:
        response = self._request(ctx, "GET", f"/blobs/{desc.digest}", stream=True)
        try:
            store.push(desc, self._iter_chunks(ctx, response))
        finally:
            response.close()

    def _iter_chunks(self, ctx: SyncContext, response: httpx.Response) -> Iterator[bytes]:
        for chunk in response.iter_bytes(CHUNK_SIZE):
            ctx.raise_if_done()
            yield chunk

    def _request(
        self,
        ctx: SyncContext,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        stream: bool = False,
    ) -> httpx.Response:
        """Send a request with request-level retries bounded by ``ctx``."""
        url = self.base_url + path
        for attempt in self._policy.retrying(sleep=ctx.sleep):
            with attempt:
                ctx.raise_if_done()
                response = self._send(ctx, method, url, headers or {}, stream)
                if attempt.retry_state.attempt_number > 1:
                    logger.debug(
                        f"{method} {url} succeeded on attempt {attempt.retry_state.attempt_number}"
                    )
        return response

    def _send(
        self,
        ctx: SyncContext,
        method: str,
        url: str,
        headers: dict[str, str],
        stream: bool,
    ) -> httpx.Response:
        http = self._client()
        timeout = self._bounded_timeout(ctx)

        request = http.build_request(method, url, headers=self._authorize(headers), timeout=timeout)
        response = http.send(request, stream=stream)
        self._handle_warnings(response)

        if response.status_code == 401:
            challenge = parse_challenge(response.headers.get("www-authenticate"))
            response.close()
            if challenge is not None and self._answer_challenge(ctx, challenge):
                request = http.build_request(
                    method, url, headers=self._authorize(headers), timeout=timeout
                )
                response = http.send(request, stream=stream)
                self._handle_warnings(response)

        if not response.is_success:
            response.close()
            raise RegistryResponseError(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                url=url,
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
        return response

    def _client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(
                transport=self._transport,
                timeout=self._timeout,
                follow_redirects=True,
            )
        return self._http

    def _bounded_timeout(self, ctx: SyncContext, timeout: float | None = None) -> float:
        timeout = self._timeout if timeout is None else timeout
        remaining = ctx.remaining()
        if remaining is None:
            return timeout
        if remaining <= 0:
            ctx.raise_if_done()
        return min(timeout, remaining)

    def _authorize(self, headers: dict[str, str]) -> dict[str, str]:
        registry = self._coords.registry
        scheme = self._cache.scheme(registry)
        merged = dict(headers)
        if scheme == "bearer":
            token = self._cache.token(registry, pull_scope(self._coords.repository))
            if token:
                merged["Authorization"] = f"Bearer {token}"
        elif scheme == "basic":
            cred = self._credential(registry)
            if not cred.is_empty:
                merged["Authorization"] = _basic_header(cred)
        return merged

    def _answer_challenge(self, ctx: SyncContext, challenge: Challenge) -> bool:
        """Obtain authorization for ``challenge``; False when there is nothing to offer."""
        registry = self._coords.registry
        if challenge.scheme == "basic":
            if self._credential(registry).is_empty:
                return False
            self._cache.set_scheme(registry, "basic")
            return True

        scope = pull_scope(self._coords.repository)
        token = self._fetch_token(ctx, challenge, challenge.scope or scope)
        self._cache.set_scheme(registry, "bearer")
        self._cache.set_token(registry, scope, token)
        return True

    def _fetch_token(self, ctx: SyncContext, challenge: Challenge, scope: str) -> str:
        if not challenge.realm:
            raise RegistryResponseError("bearer challenge without realm", status_code=401)

        params = {"scope": scope}
        if challenge.service:
            params["service"] = challenge.service

        cred = self._credential(self._coords.registry)
        auth = None if cred.is_empty else (cred.username, cred.password)

        response = self._client().get(
            challenge.realm,
            params=params,
            auth=auth,
            timeout=self._bounded_timeout(ctx, self._login_timeout),
        )
        if not response.is_success:
            raise RegistryResponseError(
                f"token request to {challenge.realm} returned {response.status_code}",
                status_code=response.status_code,
                url=challenge.realm,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise RegistryResponseError(
                f"invalid token response from {challenge.realm}",
                status_code=response.status_code,
                url=challenge.realm,
            ) from e
        token = payload.get("token") or payload.get("access_token")
        if not token:
            raise RegistryResponseError(
                f"token response from {challenge.realm} carried no token",
                status_code=response.status_code,
                url=challenge.realm,
            )
        return token

    def _handle_warnings(self, response: httpx.Response) -> None:
        if self.warning_handler is None:
            return
        for value in response.headers.get_list("warning"):
            match = _WARNING_RE.match(value)
            if match:
                self.warning_handler(match.group(1))


def _basic_header(cred: Credential) -> str:
    raw = f"{cred.username}:{cred.password}".encode()
    return "Basic " + base64.b64encode(raw).decode()


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _parse_manifest(reference: str, body: bytes) -> dict:
    """Decode a manifest body; anything but a JSON object is a bad response."""
    try:
        manifest = json.loads(body)
    except ValueError as e:
        raise RegistryResponseError(f"invalid manifest {reference}: {e}", status_code=200) from e
    if not isinstance(manifest, dict):
        raise RegistryResponseError(
            f"invalid manifest {reference}: expected a JSON object, got {type(manifest).__name__}",
            status_code=200,
        )
    return manifest


def _entries(manifest: dict, key: str) -> list:
    value = manifest.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list")
    return value
