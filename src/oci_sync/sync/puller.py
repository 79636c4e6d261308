"""
Puller - runs one logical pull as a bounded sequence of attempts.

To respect registry rate limits, a pull cycle:
- has ``settings.deadline`` seconds (60) to complete, across all attempts
- waits ``settings.retry_interval`` seconds (10) between attempts
- makes no more than ``settings.max_retries`` attempts (3)

Transient failures (timeouts, 5xx, 429, 408, 404, failed verification) are
retried; anything else stops the cycle at once. Cancellation is reported,
never retried.
"""

import logging
import time
from typing import Callable

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from oci_sync.config import SyncSettings, get_settings
from oci_sync.core.context import SyncContext
from oci_sync.core.exceptions import (
    CancellationError,
    OciSyncError,
    PullError,
    RetryExhaustedError,
    is_retriable_error,
)
from oci_sync.core.models import Descriptor
from oci_sync.sync.artifact import Artifact


class Puller:
    """Retry engine wrapping Artifact.pull."""

    def __init__(
        self,
        settings: SyncSettings | None = None,
        logger: logging.Logger | None = None,
    ):
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def settings(self) -> SyncSettings:
        return self._settings

    def pull_with_retry(self, ctx: SyncContext, artifact: Artifact) -> Descriptor:
        """
        Pull ``artifact`` with retries, bounded by the configured deadline.

        Args:
            ctx: Governing context; cancelling it abandons the cycle
            artifact: Prepared artifact to pull

        Returns:
            Root descriptor of the pulled artifact

        Raises:
            PullError: A terminal failure stopped the cycle
            RetryExhaustedError: Every attempt failed transiently
            CancellationError: ``ctx`` was cancelled or the deadline passed
        """
        start = time.monotonic()
        coords = str(artifact)
        deadline = self._settings.deadline
        attempts = 0

        self._logger.debug(f"creating context with timeout of {deadline}s for artifact {coords}")
        with ctx.with_timeout(deadline) as pull_ctx:
            retrying = Retrying(
                stop=stop_after_attempt(self._settings.max_retries),
                wait=wait_fixed(self._settings.retry_interval),
                retry=retry_if_exception(is_retriable_error),
                sleep=pull_ctx.sleep,
                before_sleep=self._log_retry(coords),
            )
            try:
                for attempt in retrying:
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        desc = artifact.pull(pull_ctx)
            except CancellationError:
                raise
            except RetryError as e:
                cause = e.last_attempt.exception()
                raise RetryExhaustedError(
                    f"failed to pull artifact {coords} after {attempts} attempts: {cause}",
                    coordinates=coords,
                    attempts=attempts,
                ) from cause
            except OciSyncError as e:
                raise PullError(
                    f"failed to pull artifact {coords}: {e}",
                    coordinates=coords,
                    attempts=attempts,
                ) from e

        elapsed = time.monotonic() - start
        self._logger.info(
            f"Successfully pulled artifact {coords} with digest {desc.digest} "
            f"in {elapsed:.2f}s ({attempts} attempt{'s' if attempts != 1 else ''})"
        )
        return desc

    def _log_retry(self, coords: str) -> Callable[[RetryCallState], None]:
        def log(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            self._logger.warning(
                f"Pull attempt {retry_state.attempt_number} for {coords} failed: {error}; "
                f"retrying in {self._settings.retry_interval}s"
            )

        return log
