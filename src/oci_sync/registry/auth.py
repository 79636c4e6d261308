"""
Registry authentication helpers.

Registries answer unauthenticated requests with a 401 and a
``WWW-Authenticate`` challenge. For ``Bearer`` challenges the client trades
its credential (or nothing, for anonymous pulls) for a token scoped to the
repository; for ``Basic`` it sends the credential directly. Tokens are kept
in a TokenCache shared by every request of one client handle.
"""

import re
import threading
from dataclasses import dataclass, field

from oci_sync.core.models import Credential

_PARAM_RE = re.compile(r'(\w+)=(?:"([^"]*)"|([^,\s]+))')


@dataclass(frozen=True)
class Challenge:
    """Parsed WWW-Authenticate challenge."""

    scheme: str
    params: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def realm(self) -> str:
        return self.params.get("realm", "")

    @property
    def service(self) -> str:
        return self.params.get("service", "")

    @property
    def scope(self) -> str:
        return self.params.get("scope", "")


def parse_challenge(header: str | None) -> Challenge | None:
    """Parse a WWW-Authenticate header; None if it is absent or unrecognised."""
    if not header:
        return None
    scheme, _, rest = header.strip().partition(" ")
    scheme = scheme.lower()
    if scheme not in ("basic", "bearer"):
        return None
    params = {
        key.lower(): quoted if quoted else bare
        for key, quoted, bare in _PARAM_RE.findall(rest)
    }
    return Challenge(scheme=scheme, params=params)


def pull_scope(repository: str) -> str:
    return f"repository:{repository}:pull"


class StaticCredential:
    """Credential bound to a single registry host."""

    def __init__(self, registry: str, credential: Credential):
        self._registry = registry
        self._credential = credential

    def __call__(self, registry: str) -> Credential:
        if registry == self._registry:
            return self._credential
        return Credential.empty()

    @property
    def registry(self) -> str:
        return self._registry


class TokenCache:
    """Thread-safe cache of auth schemes and bearer tokens per registry and scope."""

    def __init__(self):
        self._lock = threading.Lock()
        self._schemes: dict[str, str] = {}
        self._tokens: dict[tuple[str, str], str] = {}

    def scheme(self, registry: str) -> str | None:
        with self._lock:
            return self._schemes.get(registry)

    def set_scheme(self, registry: str, scheme: str) -> None:
        with self._lock:
            self._schemes[registry] = scheme

    def token(self, registry: str, scope: str) -> str | None:
        with self._lock:
            return self._tokens.get((registry, scope))

    def set_token(self, registry: str, scope: str, token: str) -> None:
        with self._lock:
            self._tokens[(registry, scope)] = token
