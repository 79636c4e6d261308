"""Pytest configuration and fixtures."""

import hashlib
import json
import tempfile
from pathlib import Path
from typing import Generator

import httpx
import pytest

from oci_sync.config import SyncSettings
from oci_sync.core.models import ANNOTATION_TITLE, ANNOTATION_UNPACK, Descriptor
from oci_sync.registry.client import (
    MEDIA_TYPE_OCI_INDEX,
    MEDIA_TYPE_OCI_MANIFEST,
    HttpRegistryClient,
    RegistryClient,
)


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


class FakeRegistry:
    """
    In-process OCI registry served through httpx.MockTransport.

    Serves manifests and blobs for one repository. ``failures`` holds status
    codes returned (one per request) before normal service resumes.
    """

    def __init__(self, host: str = "registry.example.com", repository: str = "acme/zones"):
        self.host = host
        self.repository = repository
        self.blobs: dict[str, bytes] = {}
        self.manifests: dict[str, tuple[str, bytes, str]] = {}
        self.layers: dict[str, str] = {}
        self.failures: list[int] = []
        self.requests: list[httpx.Request] = []
        self.warnings: list[str] = []

    @property
    def url(self) -> str:
        return f"{self.host}/{self.repository}"

    def add_blob(
        self,
        data: bytes,
        *,
        title: str | None = None,
        unpack: bool = False,
        media_type: str = "application/octet-stream",
    ) -> dict:
        digest = sha256_digest(data)
        self.blobs[digest] = data
        desc = {"mediaType": media_type, "digest": digest, "size": len(data)}
        annotations = {}
        if title:
            annotations[ANNOTATION_TITLE] = title
            self.layers[title] = digest
        if unpack:
            annotations[ANNOTATION_UNPACK] = "true"
        if annotations:
            desc["annotations"] = annotations
        return desc

    def add_artifact(
        self,
        files: dict[str, bytes],
        tag: str = "1.0",
        *,
        unpack: tuple[str, ...] = (),
    ) -> str:
        """Publish a manifest with one titled layer per file; returns its digest."""
        config = self.add_blob(b"{}", media_type="application/vnd.oci.image.config.v1+json")
        layers = [
            self.add_blob(data, title=name, unpack=name in unpack) for name, data in files.items()
        ]
        manifest = {
            "schemaVersion": 2,
            "mediaType": MEDIA_TYPE_OCI_MANIFEST,
            "config": config,
            "layers": layers,
        }
        return self.add_manifest(manifest, tag)

    def add_manifest(self, manifest: dict, tag: str | None = None) -> str:
        body = json.dumps(manifest).encode()
        return self.add_manifest_body(body, tag, manifest.get("mediaType", MEDIA_TYPE_OCI_MANIFEST))

    def add_manifest_body(
        self, body: bytes, tag: str | None = None, media_type: str = MEDIA_TYPE_OCI_MANIFEST
    ) -> str:
        """Serve ``body`` verbatim as a manifest, whether or not it is valid."""
        digest = sha256_digest(body)
        entry = (media_type, body, digest)
        self.manifests[digest] = entry
        if tag:
            self.manifests[tag] = entry
        return digest

    def add_index(self, children: list[str], tag: str) -> str:
        manifests = []
        for digest in children:
            media_type, body, _ = self.manifests[digest]
            manifests.append({"mediaType": media_type, "digest": digest, "size": len(body)})
        return self.add_manifest(
            {"schemaVersion": 2, "mediaType": MEDIA_TYPE_OCI_INDEX, "manifests": manifests}, tag
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        headers = [("Warning", f'299 - "{w}"') for w in self.warnings]
        if self.failures:
            return httpx.Response(self.failures.pop(0), headers=headers)

        prefix = f"/v2/{self.repository}/"
        path = request.url.path
        if path.startswith(prefix + "manifests/"):
            entry = self.manifests.get(path[len(prefix + "manifests/"):])
            if entry is None:
                return httpx.Response(404, headers=headers)
            media_type, body, digest = entry
            headers += [("Content-Type", media_type), ("Docker-Content-Digest", digest)]
            return httpx.Response(200, content=body, headers=headers)
        if path.startswith(prefix + "blobs/"):
            data = self.blobs.get(path[len(prefix + "blobs/"):])
            if data is None:
                return httpx.Response(404, headers=headers)
            return httpx.Response(200, content=data, headers=headers)
        return httpx.Response(404, headers=headers)

    def manifest_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if "/manifests/" in r.url.path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client_factory(self, coordinates, settings) -> HttpRegistryClient:
        return HttpRegistryClient(
            coordinates,
            policy=settings.retry_policy(),
            timeout=settings.request_timeout,
            transport=self.transport(),
        )


class FakeRegistryClient(RegistryClient):
    """
    Registry client double for tests that do not exercise HTTP.

    Pushes ``blobs`` (descriptor, data) into the store on copy and returns
    ``root``, or raises ``error`` when set.
    """

    def __init__(self, coordinates=None, settings=None):
        self.coordinates = coordinates
        self.plain_http = False
        self.warning_handler = None
        self.credential = None
        self.cache = None
        self.blobs: list[tuple[Descriptor, bytes]] = []
        self.root: Descriptor | None = None
        self.error: Exception | None = None
        self.copies = 0
        self.closed = False

    def authenticate(self, credential, cache) -> None:
        self.credential = credential
        self.cache = cache

    def close(self) -> None:
        self.closed = True

    def copy(self, ctx, reference, store) -> Descriptor:
        self.copies += 1
        ctx.raise_if_done()
        if self.error is not None:
            raise self.error
        for desc, data in self.blobs:
            store.push(desc, [data])
        return self.root

    def publish(self, files: dict[str, bytes]) -> Descriptor:
        """Set up titled blobs plus a root manifest that copy() will push."""
        self.blobs = []
        for name, data in files.items():
            desc = Descriptor(
                media_type="application/octet-stream",
                digest=sha256_digest(data),
                size=len(data),
                annotations={ANNOTATION_TITLE: name},
            )
            self.blobs.append((desc, data))
        body = json.dumps({"layers": [d.digest for d, _ in self.blobs]}).encode()
        self.root = Descriptor(
            media_type=MEDIA_TYPE_OCI_MANIFEST, digest=sha256_digest(body), size=len(body)
        )
        self.blobs.append((self.root, body))
        return self.root


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fast_settings() -> SyncSettings:
    """Settings with no waits so retry paths run instantly."""
    return SyncSettings(
        deadline=10.0,
        retry_interval=0.0,
        max_retries=3,
        min_interval=1.0,
        default_interval=1.0,
        request_timeout=5.0,
        policy_min_wait=0.0,
        policy_max_wait=0.0,
        policy_max_attempts=1,
    )


@pytest.fixture
def registry() -> FakeRegistry:
    """Provide an empty fake registry."""
    return FakeRegistry()


@pytest.fixture
def fake_client() -> FakeRegistryClient:
    """Provide a fake registry client; pass ``lambda c, s: fake_client`` as the factory."""
    return FakeRegistryClient()
