"""
oci-sync Exception Hierarchy.

Defines the errors raised across the sync engine. Every error carries a
structured ``details`` mapping so log lines and CLI output can name the
artifact coordinates involved.
"""

from typing import Any


class OciSyncError(Exception):
    """
    Base exception for all oci-sync errors.

    All custom exceptions inherit from this class, allowing
    generic catch blocks and consistent error handling.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        """
        Initialize an OciSyncError.

        Args:
            message: Human-readable error message
            details: Optional structured data for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details."""
        base = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{base} ({details_str})"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(OciSyncError):
    """
    Errors in configuration loading or validation.

    Raised when:
    - An artifact URL or destination path is missing
    - An artifact URL cannot be parsed into a registry reference
    - Settings from the environment or a config file are invalid
    """

    def __init__(
        self,
        message: str,
        *,
        config_file: str | None = None,
        env_var: str | None = None,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a ConfigurationError.

        Args:
            message: Human-readable error message
            config_file: Path to configuration file if applicable
            env_var: Environment variable name if applicable
            config_key: Configuration key if applicable
            details: Optional structured data for debugging
        """
        details = details or {}
        if config_file:
            details["config_file"] = config_file
        if env_var:
            details["env_var"] = env_var
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, details=details)
        self.config_file = config_file
        self.env_var = env_var
        self.config_key = config_key


class CredentialError(ConfigurationError):
    """Raised when a registry credential is incomplete or inconsistent."""

    def __init__(
        self,
        message: str = "username and password are required",
        *,
        registry: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if registry:
            details["registry"] = registry
        super().__init__(message, config_key="credential", details=details)
        self.registry = registry


class RegistryResponseError(OciSyncError):
    """
    Raw non-success response from the registry.

    Raised by the registry client before any retry classification, so the
    retry predicate can inspect ``status_code`` and ``retry_after``.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        url: str | None = None,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["status_code"] = status_code
        if url:
            details["url"] = url
        if retry_after is not None:
            details["retry_after_seconds"] = retry_after
        super().__init__(message, details=details)
        self.status_code = status_code
        self.url = url
        self.retry_after = retry_after


class TransportError(OciSyncError):
    """
    Errors talking to the registry during a single pull attempt.

    Subclasses state whether the failure may go away on its own
    (TransientTransportError) or not (TerminalTransportError).
    """

    def __init__(
        self,
        message: str,
        *,
        coordinates: str | None = None,
        status_code: int | None = None,
        wait_hint: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a TransportError.

        Args:
            message: Human-readable error message
            coordinates: Artifact coordinates (registry/repository:reference)
            status_code: HTTP status code if the registry answered
            wait_hint: Server-provided delay before retrying, in seconds
            details: Optional structured data for debugging
        """
        details = details or {}
        if coordinates:
            details["artifact"] = coordinates
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details)
        self.coordinates = coordinates
        self.status_code = status_code
        self.wait_hint = wait_hint


class TransientTransportError(TransportError):
    """Timeout, 5xx, 429, 408 or 404 from the registry. Retried."""


class TerminalTransportError(TransportError):
    """Any other registry failure. Never retried."""


class VerificationError(OciSyncError):
    """
    Raised when copied content cannot be verified.

    Covers a copy that reported success while the object is absent from
    the destination store, and blobs whose digest or size do not match
    their descriptor.
    """

    def __init__(
        self,
        message: str,
        *,
        digest: str | None = None,
        expected: str | None = None,
        actual: str | None = None,
        coordinates: str | None = None,
    ):
        details: dict[str, Any] = {}
        if coordinates:
            details["artifact"] = coordinates
        if digest:
            details["digest"] = digest
        if expected is not None:
            details["expected"] = expected
        if actual is not None:
            details["actual"] = actual
        super().__init__(message, details=details)
        self.digest = digest
        self.expected = expected
        self.actual = actual


class StoreError(OciSyncError):
    """Raised when the destination content store cannot be opened or written."""

    def __init__(self, message: str, *, path: str | None = None):
        details = {"path": path} if path else {}
        super().__init__(message, details=details)
        self.path = path


class CancellationError(OciSyncError):
    """
    Raised when the governing context is cancelled or its deadline passes.

    Reported as-is by the puller; never retried.
    """

    CANCELLED = "context cancelled"
    DEADLINE_EXCEEDED = "deadline exceeded"

    def __init__(self, reason: str = CANCELLED):
        super().__init__(reason, details={})
        self.reason = reason

    @property
    def deadline_exceeded(self) -> bool:
        """True if the context ended because its deadline passed."""
        return self.reason == self.DEADLINE_EXCEEDED


class PullError(OciSyncError):
    """
    A pull cycle failed after one or more attempts.

    Names the artifact coordinates and the number of attempts made. The
    underlying failure is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        coordinates: str,
        attempts: int,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["artifact"] = coordinates
        details["attempts"] = attempts
        super().__init__(message, details=details)
        self.coordinates = coordinates
        self.attempts = attempts


class RetryExhaustedError(PullError):
    """Raised when every attempt in the retry budget failed transiently."""


def format_exception(error: Exception) -> str:
    """
    Format an exception for user-friendly display.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, OciSyncError):
        return str(error)
    return f"{error.__class__.__name__}: {error}"


def is_retriable_error(error: Exception) -> bool:
    """
    Determine if a pull attempt failure is suitable for retry.

    Args:
        error: The exception to check

    Returns:
        True if the error should be retried
    """
    if isinstance(error, CancellationError):
        return False
    return isinstance(error, (TransientTransportError, VerificationError))
