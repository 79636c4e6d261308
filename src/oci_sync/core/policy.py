"""
Retry classification for registry transport outcomes.

``classify_outcome`` decides whether a response status or network error is
worth another attempt. ``RetryPolicy`` turns that decision into a bounded
tenacity retry with exponential backoff, used for individual registry
requests. The puller reuses the same predicate to classify whole attempts.
"""

import random
from dataclasses import dataclass
from typing import Callable

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from oci_sync.core.exceptions import CancellationError, RegistryResponseError
from oci_sync.core.models import RetryDecision

RETRYABLE_STATUS_CODES = frozenset({404, 408, 429})


def classify_outcome(
    status_code: int | None = None,
    error: BaseException | None = None,
    retry_after: float | None = None,
) -> RetryDecision:
    """
    Classify a transport outcome as retryable or terminal.

    Args:
        status_code: HTTP status of the response, if one arrived
        error: Network-level error, if the request failed before a response
        retry_after: Server-provided Retry-After value in seconds

    Returns:
        RetryDecision for the outcome
    """
    if error is not None:
        # Only timeouts are transient at the network level; refused
        # connections and DNS failures are terminal.
        if isinstance(error, (httpx.TimeoutException, TimeoutError)):
            return RetryDecision(retryable=True)
        return RetryDecision(retryable=False)

    if status_code is None:
        return RetryDecision(retryable=False)

    if status_code in (408, 429):
        return RetryDecision(retryable=True, wait_hint=retry_after)

    if status_code == 0 or status_code >= 500:
        return RetryDecision(retryable=True, wait_hint=retry_after)

    # Registries may serve eventually consistent manifests right after a push
    if status_code == 404:
        return RetryDecision(retryable=True)

    return RetryDecision(retryable=False)


def classify_exception(error: BaseException) -> RetryDecision:
    """Classify an exception raised by the registry client."""
    if isinstance(error, CancellationError):
        return RetryDecision(retryable=False)
    if isinstance(error, RegistryResponseError):
        return classify_outcome(status_code=error.status_code, retry_after=error.retry_after)
    return classify_outcome(error=error)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded request-level retry policy.

    Waits grow as ``backoff_base * backoff_factor ** (attempt - 1)`` with
    +/- ``jitter`` spread, clamped to ``[min_wait, max_wait]``. A server wait
    hint replaces the curve but is clamped the same way.
    """

    min_wait: float = 0.2
    max_wait: float = 3.0
    max_attempts: int = 3
    backoff_base: float = 0.25
    backoff_factor: float = 2.0
    jitter: float = 0.1

    def backoff(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        delay = self.backoff_base * self.backoff_factor ** max(attempt - 1, 0)
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return min(self.max_wait, max(self.min_wait, delay))

    def __call__(self, retry_state: RetryCallState) -> float:
        """tenacity wait strategy."""
        hint = None
        if retry_state.outcome is not None and retry_state.outcome.failed:
            hint = classify_exception(retry_state.outcome.exception()).wait_hint
        if hint is not None:
            return min(self.max_wait, max(self.min_wait, hint))
        return self.backoff(retry_state.attempt_number)

    def retrying(self, sleep: Callable[[float], None] | None = None) -> Retrying:
        """
        Build a tenacity Retrying for one registry request.

        Args:
            sleep: Sleep function; pass a context's ``sleep`` so backoff
                waits end early on cancellation

        Returns:
            Retrying that re-raises the last error once the budget is spent
        """
        kwargs = {}
        if sleep is not None:
            kwargs["sleep"] = sleep
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self,
            retry=retry_if_exception(lambda e: classify_exception(e).retryable),
            reraise=True,
            **kwargs,
        )


DEFAULT_POLICY = RetryPolicy()
