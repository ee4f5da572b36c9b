"""Update orchestrator: the state machine behind every activation.

Lifecycle of one run:
1. Wait until the connectivity monitor reports an eligible network
2. Fetch the manifest and compare it with the installed build
3. Download and verify the artifact
4. Dispatch it to the installer
5. Wait the install grace delay, delete the artifact, stop

Any failure in steps 2-4 discards the artifact, waits the retry backoff,
and starts again from step 1 with nothing carried over.  Retries are
unbounded: a run ends only up to date, installed, or cancelled.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol
from uuid import uuid4

import structlog

from bootstrap_agent.config import Settings
from bootstrap_agent.connectivity import ConnectivityMonitor
from bootstrap_agent.errors import (
    ChecksumMismatch,
    DownloadFailed,
    ErrorKind,
    InstallDispatchFailed,
    ManifestUnavailable,
    UpdateError,
)
from bootstrap_agent.fetcher import ArtifactFetcher
from bootstrap_agent.logging import get_logger
from bootstrap_agent.manifest import ManifestResolver
from bootstrap_agent.models import (
    DownloadFailure,
    DownloadProgress,
    FailureReason,
    InstallStrategy,
    Manifest,
    OrchestratorState,
    StatusEvent,
)
from bootstrap_agent.registry import PackageRegistry
from bootstrap_agent.status import StatusBus

log = get_logger("bootstrap_agent.orchestrator")

Sleep = Callable[[float], Awaitable[None]]


class Dispatcher(Protocol):
    async def install(self, artifact: Path) -> InstallStrategy | None: ...

    async def wait_pending(self) -> bool: ...


class UpdateOrchestrator:
    """Drives one update run at a time."""

    def __init__(
        self,
        settings: Settings,
        *,
        monitor: ConnectivityMonitor,
        resolver: ManifestResolver,
        fetcher: ArtifactFetcher,
        registry: PackageRegistry,
        dispatcher: Dispatcher,
        status_bus: StatusBus | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._monitor = monitor
        self._resolver = resolver
        self._fetcher = fetcher
        self._registry = registry
        self._dispatcher = dispatcher
        self._bus = status_bus or StatusBus()
        self._sleep = sleep
        self._task: asyncio.Task[OrchestratorState] | None = None
        self._state = OrchestratorState.IDLE
        self._attempt = 0

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def status_bus(self) -> StatusBus:
        return self._bus

    def activate(self) -> bool:
        """Start a run.  Returns False (and does nothing) if one is active."""
        if self.is_running:
            log.info("activation_ignored_already_running", state=self._state.value)
            return False

        self._attempt = 0
        run_id = uuid4().hex[:12]
        self._task = asyncio.get_running_loop().create_task(
            self._run(run_id), name="update-orchestrator"
        )
        log.info("orchestrator_activated", run_id=run_id)
        return True

    async def wait(self) -> OrchestratorState:
        """Wait for the current run and return its terminal state."""
        task = self._task
        if task is None:
            return self._state
        await asyncio.wait([task])
        if task.cancelled():
            return OrchestratorState.CANCELLED
        return task.result()

    async def shutdown(self) -> None:
        """Cancel the active run, if any, and wait for it to unwind."""
        task = self._task
        if task is None or task.done():
            return
        log.info("orchestrator_shutdown_requested", state=self._state.value)
        task.cancel()
        await asyncio.wait([task])

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def _run(self, run_id: str) -> OrchestratorState:
        # Runs in its own task, so the bound context stays local to this run
        structlog.contextvars.bind_contextvars(run_id=run_id)
        log.info("orchestrator_run_started", package=self._settings.target_package)
        try:
            while True:
                self._attempt += 1
                structlog.contextvars.bind_contextvars(attempt=self._attempt)
                try:
                    final = await self._iterate()
                except UpdateError as exc:
                    await self._retry(exc.kind, str(exc))
                    continue
                except Exception as exc:
                    log.exception("orchestrator_unexpected_error")
                    await self._retry(None, f"Unexpected error: {exc}")
                    continue
                log.info("orchestrator_run_finished", state=final.value)
                return final
        except asyncio.CancelledError:
            self._fetcher.discard()
            self._transition(OrchestratorState.CANCELLED, "Update cancelled")
            raise

    async def _iterate(self) -> OrchestratorState:
        await self._wait_for_connectivity()

        manifest = await self._check_version()
        if manifest is None:
            return OrchestratorState.UP_TO_DATE

        self._transition(
            OrchestratorState.DOWNLOADING,
            f"Downloading update (build {manifest.build_number})",
        )
        outcome = await self._fetcher.fetch(
            manifest.artifact_url,
            manifest.checksum,
            self._on_progress,
        )
        if isinstance(outcome, DownloadFailure):
            if outcome.reason is FailureReason.CHECKSUM_MISMATCH:
                raise ChecksumMismatch("Downloaded file failed verification", detail=outcome.detail)
            raise DownloadFailed(f"Download failed ({outcome.reason.value})", detail=outcome.detail)

        self._transition(OrchestratorState.INSTALLING, "Installing update")
        strategy = await self._dispatcher.install(outcome.path)
        if strategy is None:
            raise InstallDispatchFailed("Installer could not be started")

        return await self._cleanup(strategy, manifest)

    async def _wait_for_connectivity(self) -> None:
        self._transition(
            OrchestratorState.WAITING_FOR_CONNECTIVITY, "Waiting for network connection"
        )
        interval = self._settings.poll_interval_seconds
        reported = False
        while not await self._monitor.is_eligible():
            if not reported:
                # Published once per wait so an offline device does not flood listeners
                self._publish(
                    OrchestratorState.WAITING_FOR_CONNECTIVITY,
                    f"No eligible network; checking again every {interval:g}s",
                    error_kind=ErrorKind.CONNECTIVITY_UNAVAILABLE.value,
                )
                reported = True
            log.debug("connectivity_not_eligible", retry_in=interval)
            await self._sleep(interval)
        log.info("connectivity_eligible")

    async def _check_version(self) -> Manifest | None:
        """Return the manifest when an install is needed, None when up to date."""
        self._transition(OrchestratorState.CHECKING_VERSION, "Checking for updates")
        manifest = await self._resolver.fetch_manifest(
            self._settings.manifest_url,
            self._settings.http_timeout_seconds,
        )
        if manifest is None:
            raise ManifestUnavailable("Update server unreachable or manifest invalid")

        installed = await self._registry.installed_state(self._settings.target_package)
        log.info(
            "versions_compared",
            installed=installed.build_number,
            available=manifest.build_number,
        )
        if installed.is_current(manifest):
            self._transition(
                OrchestratorState.UP_TO_DATE,
                f"Up to date (build {installed.build_number})",
            )
            return None
        return manifest

    async def _cleanup(self, strategy: InstallStrategy, manifest: Manifest) -> OrchestratorState:
        if strategy is InstallStrategy.PRIVILEGED:
            grace = self._settings.privileged_grace_seconds
        else:
            grace = self._settings.interactive_grace_seconds

        self._transition(
            OrchestratorState.CLEANUP,
            f"Install started ({strategy.value}); removing download in {grace:g}s",
        )
        # The installer may still be reading the artifact
        await self._sleep(grace)
        self._fetcher.discard()
        if strategy is InstallStrategy.PRIVILEGED:
            # The commit outlives the grace delay on slow storage
            await self._dispatcher.wait_pending()

        installed = await self._registry.installed_state(self._settings.target_package)
        if installed.is_current(manifest):
            log.info("install_confirmed", build=installed.build_number)
        else:
            log.warning(
                "install_unconfirmed",
                installed=installed.build_number,
                expected=manifest.build_number,
                strategy=strategy.value,
            )
        self._publish(OrchestratorState.CLEANUP, "Update complete")
        return OrchestratorState.CLEANUP

    async def _retry(self, kind: ErrorKind | None, reason: str) -> None:
        # Nothing survives into the next iteration
        self._fetcher.discard()
        backoff = self._settings.retry_backoff_seconds
        self._transition(
            OrchestratorState.RETRY_SCHEDULED,
            f"{reason}; retrying in {backoff:g}s",
            error_kind=kind.value if kind is not None else None,
        )
        await self._sleep(backoff)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _on_progress(self, progress: DownloadProgress) -> None:
        if progress.percent is not None:
            message = f"Downloading update ({progress.percent}%)"
        else:
            message = f"Downloading update ({progress.bytes_downloaded} bytes)"
        self._publish(
            OrchestratorState.DOWNLOADING,
            message,
            percent=progress.percent,
            bytes_downloaded=progress.bytes_downloaded,
            total_bytes=progress.total_bytes,
        )

    def _transition(
        self, state: OrchestratorState, message: str, *, error_kind: str | None = None
    ) -> None:
        previous = self._state
        self._state = state
        log.info(
            "orchestrator_transition",
            previous=previous.value,
            state=state.value,
            message=message,
            error_kind=error_kind,
        )
        self._publish(state, message, error_kind=error_kind)

    def _publish(self, phase: OrchestratorState, message: str, **fields: object) -> None:
        self._bus.publish(StatusEvent(phase=phase, message=message, **fields))  # type: ignore[arg-type]
