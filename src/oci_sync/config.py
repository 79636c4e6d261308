"""
Configuration for oci-sync.

Two layers:
- SyncSettings: engine tunables (deadline, retry interval, attempt budget,
  minimum interval), loaded from OCI_SYNC_* environment variables.
- Artifact descriptors: parsed from plain mappings or a YAML file into
  validated ArtifactDescriptor values.

Environment variables:
- OCI_SYNC_DEADLINE: seconds allowed for a whole pull cycle (default 60)
- OCI_SYNC_RETRY_INTERVAL: seconds between pull attempts (default 10)
- OCI_SYNC_MAX_RETRIES: pull attempts per cycle (default 3)
- OCI_SYNC_MIN_INTERVAL: floor for artifact intervals (default 180)
- OCI_SYNC_DEFAULT_INTERVAL: interval when none is configured (default 180)
- OCI_SYNC_REQUEST_TIMEOUT: per-request HTTP timeout (default 30)
- OCI_SYNC_LOGIN_TIMEOUT: token request timeout (default 30)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar

import yaml
from pydantic import BaseModel, Field, ValidationError

from oci_sync.core.exceptions import ConfigurationError
from oci_sync.core.models import ArtifactDescriptor, Credential
from oci_sync.core.policy import RetryPolicy

logger = logging.getLogger(__name__)

DESCRIPTOR_KEYS = frozenset({"url", "path", "interval", "username", "password", "insecure"})


class SyncSettings(BaseModel):
    """Tunables for the puller and the controller."""

    deadline: float = Field(default=60.0, gt=0)
    retry_interval: float = Field(default=10.0, ge=0)
    max_retries: int = Field(default=3, ge=1)
    min_interval: float = Field(default=180.0, gt=0)
    default_interval: float = Field(default=180.0, gt=0)
    login_timeout: float = Field(default=30.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    policy_min_wait: float = Field(default=0.2, ge=0)
    policy_max_wait: float = Field(default=3.0, ge=0)
    policy_max_attempts: int = Field(default=3, ge=1)

    ENV_VARS: ClassVar[dict[str, str]] = {
        "deadline": "OCI_SYNC_DEADLINE",
        "retry_interval": "OCI_SYNC_RETRY_INTERVAL",
        "max_retries": "OCI_SYNC_MAX_RETRIES",
        "min_interval": "OCI_SYNC_MIN_INTERVAL",
        "default_interval": "OCI_SYNC_DEFAULT_INTERVAL",
        "request_timeout": "OCI_SYNC_REQUEST_TIMEOUT",
        "login_timeout": "OCI_SYNC_LOGIN_TIMEOUT",
    }

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Load settings from the environment, keeping defaults for unset variables."""
        values: dict[str, str] = {}
        for name, env_var in cls.ENV_VARS.items():
            raw = os.getenv(env_var)
            if raw is not None and raw.strip():
                values[name] = raw.strip()

        try:
            return cls(**values)
        except ValidationError as e:
            bad = e.errors()[0]["loc"][0] if e.errors() else None
            raise ConfigurationError(
                f"Invalid oci-sync setting: {e.errors()[0]['msg'] if e.errors() else e}",
                env_var=cls.ENV_VARS.get(str(bad)),
                config_key=str(bad) if bad else None,
            ) from e

    def retry_policy(self) -> RetryPolicy:
        """Build the request-level retry policy from these settings."""
        return RetryPolicy(
            min_wait=self.policy_min_wait,
            max_wait=max(self.policy_max_wait, self.policy_min_wait),
            max_attempts=self.policy_max_attempts,
        )


@lru_cache(maxsize=1)
def get_settings() -> SyncSettings:
    """Get the process-wide settings (cached)."""
    return SyncSettings.from_env()


def parse_descriptor(
    raw: dict[str, Any],
    *,
    root: Path | None = None,
    settings: SyncSettings | None = None,
) -> ArtifactDescriptor:
    """
    Build an ArtifactDescriptor from a mapping.

    Args:
        raw: Mapping with url, path, interval, username, password, insecure
        root: Base directory for relative paths; also the default path
        settings: Settings providing the default and minimum interval

    Returns:
        Validated ArtifactDescriptor

    Raises:
        ConfigurationError: Unknown keys, missing url or path, bad interval
        CredentialError: Exactly one of username/password set
    """
    settings = settings or get_settings()
    unknown = set(raw) - DESCRIPTOR_KEYS
    if unknown:
        raise ConfigurationError(
            f"Unknown artifact option(s): {', '.join(sorted(unknown))}",
            config_key=sorted(unknown)[0],
        )

    url = str(raw.get("url") or "").strip()
    if not url:
        logger.debug(f"No URL set for artifact at {raw.get('path')}")
        raise ConfigurationError("no URL set", config_key="url")

    path = _resolve_path(raw.get("path"), root)
    if path is None:
        logger.debug(f"No path set for artifact {url}")
        raise ConfigurationError("no path set", config_key="path", details={"url": url})

    interval = settings.default_interval
    if raw.get("interval") is not None:
        try:
            value = float(raw["interval"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"invalid interval {raw['interval']!r}", config_key="interval"
            ) from e
        if value > 0:
            interval = value

    if interval < settings.min_interval:
        logger.warning(f"Interval for {url} set to minimum of {settings.min_interval}s")
        interval = settings.min_interval

    credential = Credential(
        username=str(raw.get("username") or ""),
        password=str(raw.get("password") or ""),
    )

    return ArtifactDescriptor(
        url=url,
        path=path,
        interval=interval,
        credential=credential,
        insecure=_as_bool(raw.get("insecure", False)),
    )


def load_descriptors(
    config_file: Path,
    *,
    settings: SyncSettings | None = None,
) -> list[ArtifactDescriptor]:
    """
    Load artifact descriptors from a YAML file.

    Expected shape:

        root: /srv/zones          # optional, defaults to the file's directory
        artifacts:
          - url: ghcr.io/acme/zones:1.2.0
            path: zones
            interval: 300
            username: bot
            password: s3cret

    Raises:
        ConfigurationError: If the file is missing, malformed or any entry is invalid
    """
    if not config_file.exists():
        raise ConfigurationError(
            f"Config file not found: {config_file}", config_file=str(config_file)
        )

    try:
        data = yaml.safe_load(config_file.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML: {e}", config_file=str(config_file)
        ) from e

    if not isinstance(data, dict) or not isinstance(data.get("artifacts", []), list):
        raise ConfigurationError(
            "Config must be a mapping with an 'artifacts' list",
            config_file=str(config_file),
        )

    root = Path(data["root"]) if data.get("root") else config_file.parent
    descriptors = []
    for index, entry in enumerate(data.get("artifacts") or []):
        if not isinstance(entry, dict):
            raise ConfigurationError(
                f"Artifact entry {index} must be a mapping",
                config_file=str(config_file),
            )
        try:
            descriptors.append(parse_descriptor(entry, root=root, settings=settings))
        except ConfigurationError as e:
            e.details.setdefault("config_file", str(config_file))
            e.details.setdefault("entry", index)
            raise

    return descriptors


def _resolve_path(value: Any, root: Path | None) -> Path | None:
    """Absolute paths are kept; relative ones are joined to root."""
    if value is None or not str(value).strip():
        return root
    path = Path(str(value))
    if path.is_absolute():
        return path
    if root is None:
        return path
    return root / path


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"
