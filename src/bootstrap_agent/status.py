"""Best-effort status event fan-out.

Listeners never slow down or break the update run.  Synchronous listeners
are called inline with their exceptions swallowed.  Coroutine listeners
are scheduled as tasks and never awaited.
"""

from __future__ import annotations

import asyncio
import inspect
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from bootstrap_agent.logging import get_logger
from bootstrap_agent.models import (
    InstallResult,
    InstallResultStatus,
    OrchestratorState,
    StatusEvent,
)

log = get_logger("bootstrap_agent.status")

StatusListener = Callable[[StatusEvent], Awaitable[None] | None]


class StatusBus:
    """Publishes ``StatusEvent``s to any number of listeners."""

    def __init__(self) -> None:
        self._listeners: list[StatusListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._latest: StatusEvent | None = None

    @property
    def latest(self) -> StatusEvent | None:
        return self._latest

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, event: StatusEvent) -> None:
        self._latest = event
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
            except Exception as exc:
                log.debug("status_listener_failed", phase=event.phase.value, error=str(exc))
                continue
            if inspect.isawaitable(outcome):
                self._schedule(outcome)

    def _schedule(self, awaitable: Awaitable[None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to run it on; close the coroutine so it is not leaked
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            return
        task = loop.create_task(_guard(awaitable))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


async def _guard(awaitable: Awaitable[None]) -> None:
    try:
        await awaitable
    except Exception as exc:
        log.debug("status_listener_failed", error=str(exc))


def publish_install_result(bus: StatusBus, result: InstallResult) -> None:
    """Forward a privileged install completion report to *bus*."""
    if result.status is InstallResultStatus.SUCCESS:
        message = f"Install of {result.package} finished"
    else:
        message = f"Install of {result.package} failed: {result.message or 'unknown error'}"
    bus.publish(StatusEvent(phase=OrchestratorState.CLEANUP, message=message))


def console_listener(event: StatusEvent) -> None:
    """Print status messages for an operator watching the console."""
    line = f"[{event.phase.value}] {event.message}"
    percent = f"{event.percent}%"
    if (
        event.phase is OrchestratorState.DOWNLOADING
        and event.percent is not None
        and percent not in event.message
    ):
        line = f"{line} ({percent})"
    print(line, file=sys.stderr, flush=True)
