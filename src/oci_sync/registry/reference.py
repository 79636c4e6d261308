"""Parsing of registry references: ``registry/repository[:tag][@digest]``."""

import re
from urllib.parse import urlsplit

from oci_sync.core.exceptions import ConfigurationError
from oci_sync.core.models import ResolvedCoordinates

_REPOSITORY_RE = re.compile(
    r"^[a-z0-9]+(?:(?:[._]|__|[-]*)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|[-]*)[a-z0-9]+)*)*$"
)
_TAG_RE = re.compile(r"^\w[\w.-]{0,127}$")
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")
_SCHEMES = ("oci://", "https://", "http://")


def parse_reference(url: str) -> ResolvedCoordinates:
    """
    Split an artifact URL into registry, repository and reference.

    The reference is empty when the URL names neither a tag nor a digest.
    When both are given the digest wins, as it pins the content.

    Raises:
        ConfigurationError: If any component is malformed
    """
    raw = url.strip()
    for scheme in _SCHEMES:
        if raw.startswith(scheme):
            raw = raw[len(scheme):]
            break

    registry, sep, rest = raw.partition("/")
    if not sep or not registry or not rest:
        raise _invalid(url, "expected registry/repository")
    _validate_registry(url, registry)

    reference = ""
    repository = rest
    if "@" in rest:
        repository, _, reference = rest.partition("@")
        if not _DIGEST_RE.match(reference):
            raise _invalid(url, f"invalid digest {reference!r}")
        # a tag next to a digest is informational only
        repository = repository.rsplit(":", 1)[0] if ":" in repository else repository
    elif ":" in rest:
        repository, _, reference = rest.rpartition(":")
        if not _TAG_RE.match(reference):
            raise _invalid(url, f"invalid tag {reference!r}")

    if not _REPOSITORY_RE.match(repository):
        raise _invalid(url, f"invalid repository {repository!r}")

    return ResolvedCoordinates(registry=registry, repository=repository, reference=reference)


def _validate_registry(url: str, registry: str) -> None:
    try:
        parsed = urlsplit(f"dummy://{registry}")
        _ = parsed.port  # raises ValueError on a bad port
    except ValueError as e:
        raise _invalid(url, f"invalid registry {registry!r}") from e
    if parsed.netloc != registry or not parsed.hostname or parsed.username or parsed.path:
        raise _invalid(url, f"invalid registry {registry!r}")


def _invalid(url: str, reason: str) -> ConfigurationError:
    return ConfigurationError(
        f"invalid reference {url!r}: {reason}",
        config_key="url",
        details={"url": url},
    )
