"""Tests for settings and descriptor configuration."""

import logging
from pathlib import Path

import pytest

from oci_sync.config import SyncSettings, load_descriptors, parse_descriptor
from oci_sync.core.exceptions import ConfigurationError, CredentialError


class TestSyncSettings:
    """Tests for SyncSettings."""

    def test_defaults(self) -> None:
        """Defaults match the registry-friendly pull budget."""
        settings = SyncSettings()
        assert settings.deadline == 60.0
        assert settings.retry_interval == 10.0
        assert settings.max_retries == 3
        assert settings.min_interval == 180.0
        assert settings.default_interval == 180.0

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """OCI_SYNC_* variables override defaults."""
        monkeypatch.setenv("OCI_SYNC_DEADLINE", "30")
        monkeypatch.setenv("OCI_SYNC_MAX_RETRIES", "5")
        settings = SyncSettings.from_env()
        assert settings.deadline == 30.0
        assert settings.max_retries == 5
        assert settings.retry_interval == 10.0

    def test_from_env_invalid(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Invalid values raise ConfigurationError naming the variable."""
        monkeypatch.setenv("OCI_SYNC_MAX_RETRIES", "0")
        with pytest.raises(ConfigurationError) as exc_info:
            SyncSettings.from_env()
        assert exc_info.value.env_var == "OCI_SYNC_MAX_RETRIES"

    def test_retry_policy(self) -> None:
        """Policy settings flow into the request-level RetryPolicy."""
        policy = SyncSettings(policy_min_wait=0.5, policy_max_wait=2.0, policy_max_attempts=4).retry_policy()
        assert policy.min_wait == 0.5
        assert policy.max_wait == 2.0
        assert policy.max_attempts == 4


class TestParseDescriptor:
    """Tests for parse_descriptor."""

    def test_relative_path_joined_to_root(self) -> None:
        """Relative paths resolve against the root."""
        desc = parse_descriptor(
            {"url": "ghcr.io/acme/zones:1.0", "path": "zones"},
            root=Path("/srv"),
            settings=SyncSettings(),
        )
        assert desc.path == Path("/srv/zones")

    def test_absolute_path_kept(self) -> None:
        desc = parse_descriptor(
            {"url": "ghcr.io/acme/zones", "path": "/var/zones"},
            root=Path("/srv"),
            settings=SyncSettings(),
        )
        assert desc.path == Path("/var/zones")

    def test_missing_path_defaults_to_root(self) -> None:
        desc = parse_descriptor({"url": "ghcr.io/acme/zones"}, root=Path("/srv"), settings=SyncSettings())
        assert desc.path == Path("/srv")

    def test_missing_path_without_root(self) -> None:
        with pytest.raises(ConfigurationError, match="no path set"):
            parse_descriptor({"url": "ghcr.io/acme/zones"}, settings=SyncSettings())

    def test_missing_url(self) -> None:
        with pytest.raises(ConfigurationError, match="no URL set"):
            parse_descriptor({"path": "/srv"}, settings=SyncSettings())

    def test_unknown_key(self) -> None:
        """Unknown options are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_descriptor({"url": "ghcr.io/acme/zones", "path": "/srv", "tls": "x"}, settings=SyncSettings())
        assert exc_info.value.config_key == "tls"

    def test_interval_below_minimum_is_clamped(self, caplog: pytest.LogCaptureFixture) -> None:
        """Short intervals are raised to the minimum with a warning."""
        with caplog.at_level(logging.WARNING, logger="oci_sync.config"):
            desc = parse_descriptor(
                {"url": "ghcr.io/acme/zones", "path": "/srv", "interval": 30},
                settings=SyncSettings(),
            )
        assert desc.interval == 180.0
        assert "minimum" in caplog.text

    def test_interval_above_minimum_kept(self) -> None:
        desc = parse_descriptor(
            {"url": "ghcr.io/acme/zones", "path": "/srv", "interval": 600},
            settings=SyncSettings(),
        )
        assert desc.interval == 600.0

    @pytest.mark.parametrize("interval", [None, 0, -5])
    def test_non_positive_interval_uses_default(self, interval) -> None:
        settings = SyncSettings(min_interval=10, default_interval=300)
        desc = parse_descriptor(
            {"url": "ghcr.io/acme/zones", "path": "/srv", "interval": interval},
            settings=settings,
        )
        assert desc.interval == 300.0

    def test_invalid_interval(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_descriptor(
                {"url": "ghcr.io/acme/zones", "path": "/srv", "interval": "hourly"},
                settings=SyncSettings(),
            )

    def test_username_without_password(self) -> None:
        """Half a credential is an error."""
        with pytest.raises(CredentialError):
            parse_descriptor(
                {"url": "ghcr.io/acme/zones", "path": "/srv", "username": "bot"},
                settings=SyncSettings(),
            )

    def test_credential_and_insecure(self) -> None:
        desc = parse_descriptor(
            {
                "url": "localhost:5000/acme/zones",
                "path": "/srv",
                "username": "bot",
                "password": "pw",
                "insecure": "true",
            },
            settings=SyncSettings(),
        )
        assert desc.login_required
        assert desc.credential.username == "bot"
        assert desc.insecure


class TestLoadDescriptors:
    """Tests for YAML config loading."""

    def test_load(self, temp_dir: Path) -> None:
        """Artifacts load with the root defaulting to the file's directory."""
        config = temp_dir / "sync.yaml"
        config.write_text(
            "artifacts:\n"
            "  - url: ghcr.io/acme/zones:1.0\n"
            "    path: zones\n"
            "    interval: 300\n"
            "  - url: ghcr.io/acme/other\n"
            "    path: /var/other\n"
        )
        descriptors = load_descriptors(config, settings=SyncSettings())
        assert len(descriptors) == 2
        assert descriptors[0].path == temp_dir / "zones"
        assert descriptors[0].interval == 300.0
        assert descriptors[1].path == Path("/var/other")
        assert descriptors[1].interval == 180.0

    def test_explicit_root(self, temp_dir: Path) -> None:
        config = temp_dir / "sync.yaml"
        config.write_text("root: /srv\nartifacts:\n  - url: ghcr.io/acme/zones\n    path: zones\n")
        descriptors = load_descriptors(config, settings=SyncSettings())
        assert descriptors[0].path == Path("/srv/zones")

    def test_missing_file(self, temp_dir: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_descriptors(temp_dir / "missing.yaml")

    def test_invalid_yaml(self, temp_dir: Path) -> None:
        config = temp_dir / "sync.yaml"
        config.write_text("artifacts: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_descriptors(config, settings=SyncSettings())

    def test_artifacts_must_be_list(self, temp_dir: Path) -> None:
        config = temp_dir / "sync.yaml"
        config.write_text("artifacts: nope\n")
        with pytest.raises(ConfigurationError):
            load_descriptors(config, settings=SyncSettings())

    def test_bad_entry_names_file_and_index(self, temp_dir: Path) -> None:
        """Entry errors report which file and entry failed."""
        config = temp_dir / "sync.yaml"
        config.write_text("artifacts:\n  - url: ghcr.io/acme/zones\n  - path: zones\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_descriptors(config, settings=SyncSettings())
        assert exc_info.value.details["config_file"] == str(config)
        assert exc_info.value.details["entry"] == 1

    def test_empty_file(self, temp_dir: Path) -> None:
        config = temp_dir / "sync.yaml"
        config.write_text("")
        assert load_descriptors(config, settings=SyncSettings()) == []
