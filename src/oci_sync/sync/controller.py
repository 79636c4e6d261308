"""
Sync Controller - background pull loop per artifact.

Each started artifact gets its own daemon thread which:
1. Pulls immediately
2. Waits for the next interval tick (or cancellation)
3. Pulls again, and so on until the context is cancelled

Ticks are measured from the start of the previous pull, and ticks missed
while a pull was still running are dropped, so two pulls never start closer
together than the interval and never overlap. A failed pull is logged and
the loop carries on; only cancellation stops it.
"""

import logging
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Iterable

from oci_sync.config import SyncSettings, get_settings
from oci_sync.core.context import SyncContext
from oci_sync.core.exceptions import CancellationError, ConfigurationError, OciSyncError
from oci_sync.core.models import ArtifactDescriptor
from oci_sync.sync.artifact import Artifact, ClientFactory, prepare
from oci_sync.sync.puller import Puller


@dataclass
class SyncHandle:
    """A running sync loop for one artifact."""

    artifact: Artifact
    context: SyncContext
    thread: threading.Thread

    @property
    def running(self) -> bool:
        return self.thread.is_alive()

    def cancel(self) -> None:
        """Stop this artifact's loop without touching the others."""
        self.context.cancel()

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout)


class SyncController:
    """
    Starts and runs sync loops.

    The controller holds no per-artifact state; every loop owns its
    artifact exclusively.
    """

    def __init__(
        self,
        puller: Puller | None = None,
        settings: SyncSettings | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the controller."""
        self._settings = settings or (puller.settings if puller else get_settings())
        self._logger = logger or logging.getLogger(__name__)
        self._puller = puller or Puller(self._settings, logger=logger)
        self._clock = clock

    def start(self, ctx: SyncContext, artifact: Artifact) -> SyncHandle:
        """
        Start the background loop for ``artifact``. Returns immediately.

        Calling this twice for the same artifact starts two independent
        loops; callers start each artifact once.
        """
        loop_ctx = ctx.child()
        thread = threading.Thread(
            target=self.run,
            args=(loop_ctx, artifact),
            name=f"oci-sync:{artifact}",
            daemon=True,
        )
        thread.start()
        return SyncHandle(artifact=artifact, context=loop_ctx, thread=thread)

    def start_all(
        self,
        ctx: SyncContext,
        descriptors: Iterable[ArtifactDescriptor],
        *,
        client_factory: ClientFactory | None = None,
    ) -> list[SyncHandle]:
        """
        Prepare and start every descriptor.

        A descriptor that fails setup is logged and skipped; the rest still start.
        """
        handles = []
        for descriptor in descriptors:
            try:
                artifact = prepare(
                    descriptor,
                    settings=self._settings,
                    client_factory=client_factory,
                    logger=self._logger,
                )
            except ConfigurationError as e:
                self._logger.error(f"Failed to prepare artifact {descriptor.url}: {e}")
                continue
            handles.append(self.start(ctx, artifact))
        return handles

    def run(self, ctx: SyncContext, artifact: Artifact) -> None:
        """Loop body; blocks until ``ctx`` is cancelled."""
        interval = artifact.interval
        started = self._clock()
        try:
            self._pull(ctx, artifact)

            while not ctx.done():
                now = self._clock()
                # skip ticks that elapsed while the last pull was running
                ticks = max(1, int((now - started) // interval) + 1)
                next_tick = started + ticks * interval
                if ctx.wait(max(0.0, next_tick - now)):
                    break
                started = next_tick
                self._pull(ctx, artifact)
        finally:
            if artifact.client is not None:
                artifact.client.close()

        self._logger.debug(f"Sync loop for {artifact} stopped: {ctx.err()}")

    def _pull(self, ctx: SyncContext, artifact: Artifact) -> None:
        try:
            self._puller.pull_with_retry(ctx, artifact)
        except CancellationError as e:
            if not ctx.done():
                # the pull deadline passed; the loop itself is still live
                self._logger.error(f"Failed to pull artifact {artifact}: {e}")
        except OciSyncError as e:
            self._logger.error(f"Failed to pull artifact {artifact}: {e}")
        except Exception as e:
            self._logger.exception(f"Unexpected error pulling artifact {artifact}: {e}")


@lru_cache(maxsize=1)
def get_controller() -> SyncController:
    """Get the default sync controller (cached)."""
    return SyncController()


def start(ctx: SyncContext, artifact: Artifact) -> SyncHandle:
    """Start ``artifact`` on the default controller."""
    return get_controller().start(ctx, artifact)


def start_all(
    ctx: SyncContext,
    descriptors: Iterable[ArtifactDescriptor],
    *,
    client_factory: ClientFactory | None = None,
) -> list[SyncHandle]:
    """Prepare and start every descriptor on the default controller."""
    return get_controller().start_all(ctx, descriptors, client_factory=client_factory)
