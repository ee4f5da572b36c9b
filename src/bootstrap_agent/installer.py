"""Install dispatcher.

Supports two install strategies, tried in order:

1. PRIVILEGED: an install session through the package manager
   (``pm install-create`` / ``install-write`` / ``install-commit``).  No
   user interaction, but the agent must run as root, system, or shell.
   Missing privilege is an expected condition and falls through silently.

2. INTERACTIVE: a VIEW intent for the artifact (``am start``), which
   shows the platform's install confirmation dialog.

Both report success once the request is *dispatched*.  Completion is
asynchronous: privileged sessions report through the ``on_result``
callback, interactive ones are assumed done after the grace delay.
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
from collections.abc import Callable
from pathlib import Path

from bootstrap_agent.constants import (
    AM_START_TIMEOUT,
    APK_MIME_TYPE,
    PM_INSTALL_TIMEOUT,
    PRIVILEGED_UIDS,
    VIEW_ACTION,
    VIEW_INTENT_FLAGS,
)
from bootstrap_agent.logging import get_logger
from bootstrap_agent.models import InstallResult, InstallResultStatus, InstallStrategy
from bootstrap_agent.runner import CommandResult, CommandRunner

log = get_logger("bootstrap_agent.installer")

_SESSION_RE = re.compile(r"\[(\d+)\]")
# am reports unresolvable intents on a line of its own, still exiting 0
_AM_ERROR_RE = re.compile(r"^Error(?: type \d+)?:", re.MULTILINE)
_NO_PRIVILEGE_MARKERS = ("securityexception", "install_packages", "permission denial")

InstallResultCallback = Callable[[InstallResult], None]


def share_uri(path: Path, authority: str | None = None) -> str:
    """Expose *path* to the system installer and return its URI.

    Only the artifact itself becomes readable; its directory is made
    traversable but not listable.
    """
    path.chmod(0o644)
    path.parent.chmod(0o711)
    if authority:
        return f"content://{authority}/artifacts/{path.name}"
    return path.resolve().as_uri()


def _lacks_privilege(result: CommandResult) -> bool:
    text = f"{result.stdout}\n{result.stderr}".lower()
    return any(marker in text for marker in _NO_PRIVILEGE_MARKERS)


# ------------------------------------------------------------------
# Privileged path
# ------------------------------------------------------------------


class PrivilegedInstaller:
    """Non-interactive installs through a package manager session."""

    def __init__(
        self,
        package: str,
        runner: CommandRunner | None = None,
        *,
        enabled: bool = True,
        on_result: InstallResultCallback | None = None,
    ) -> None:
        self._package = package
        self._runner = runner or CommandRunner()
        self._enabled = enabled
        self._on_result = on_result
        self._available: bool | None = None
        self._pending: set[asyncio.Task[None]] = set()

    def available(self) -> bool:
        """Capability probe; evaluated once, then cached."""
        if self._available is None:
            self._available = (
                self._enabled
                and os.geteuid() in PRIVILEGED_UIDS
                and shutil.which("pm") is not None
            )
            log.info("privileged_install_probe", available=self._available)
        return self._available

    async def dispatch(self, artifact: Path) -> bool:
        """Create and fill an install session, then commit it in the background."""
        if not self.available():
            return False

        created = await self._runner.run(
            ["pm", "install-create", "-r", "--pkg", self._package],
            timeout=PM_INSTALL_TIMEOUT,
        )
        if _lacks_privilege(created):
            self._mark_unavailable(created)
            return False
        m = _SESSION_RE.search(created.stdout)
        if not created.ok or m is None:
            log.warning(
                "privileged_session_create_failed",
                returncode=created.returncode,
                output=(created.stdout or created.stderr)[:300],
            )
            return False
        session_id = m.group(1)

        written = await self._runner.run(
            [
                "pm",
                "install-write",
                "-S",
                str(artifact.stat().st_size),
                session_id,
                "base.apk",
                str(artifact),
            ],
            timeout=PM_INSTALL_TIMEOUT,
        )
        if not written.ok or "success" not in written.stdout.lower():
            if _lacks_privilege(written):
                self._mark_unavailable(written)
            else:
                log.warning(
                    "privileged_session_write_failed",
                    session=session_id,
                    output=(written.stdout or written.stderr)[:300],
                )
            await self._runner.run(["pm", "install-abandon", session_id], timeout=PM_INSTALL_TIMEOUT)
            return False

        task = asyncio.get_running_loop().create_task(
            self._commit(session_id), name=f"install-commit-{session_id}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        log.info("privileged_install_dispatched", session=session_id, package=self._package)
        return True

    async def wait_pending(self, timeout: float | None = None) -> bool:
        """Wait for outstanding session commits.

        Commits still running after *timeout* are left running, never
        cancelled.  Returns True when none are outstanding.
        """
        if not self._pending:
            return True
        _, still_running = await asyncio.wait(set(self._pending), timeout=timeout)
        if still_running:
            log.warning("install_commit_still_running", sessions=len(still_running))
        return not still_running

    def _mark_unavailable(self, result: CommandResult) -> None:
        self._available = False
        log.debug(
            "privileged_install_unavailable",
            output=(result.stderr or result.stdout)[:200],
        )

    async def _commit(self, session_id: str) -> None:
        committed = await self._runner.run(
            ["pm", "install-commit", session_id],
            timeout=PM_INSTALL_TIMEOUT,
        )
        output = (committed.stdout or committed.stderr).strip()
        if committed.ok and output.lower().startswith("success"):
            result = InstallResult(InstallResultStatus.SUCCESS, self._package, output, session_id)
            log.info("install_result_success", package=self._package, session=session_id)
        else:
            result = InstallResult(InstallResultStatus.FAILURE, self._package, output, session_id)
            log.error(
                "install_result_failure",
                package=self._package,
                session=session_id,
                message=output[:300],
            )
        if self._on_result is not None:
            try:
                self._on_result(result)
            except Exception as exc:
                log.warning("install_result_callback_failed", error=str(exc))


# ------------------------------------------------------------------
# Interactive path
# ------------------------------------------------------------------


class InteractiveInstaller:
    """Hands the artifact to the system installer UI."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        authority: str | None = None,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._authority = authority

    async def dispatch(self, artifact: Path) -> bool:
        try:
            uri = share_uri(artifact, self._authority)
        except OSError as exc:
            log.error("artifact_share_failed", path=str(artifact), error=str(exc))
            return False

        result = await self._runner.run(
            [
                "am",
                "start",
                "-a",
                VIEW_ACTION,
                "-t",
                APK_MIME_TYPE,
                "-d",
                uri,
                "--grant-read-uri-permission",
                "-f",
                str(VIEW_INTENT_FLAGS),
            ],
            timeout=AM_START_TIMEOUT,
        )
        if not result.ok or _AM_ERROR_RE.search(f"{result.stdout}\n{result.stderr}"):
            log.error(
                "interactive_install_failed",
                returncode=result.returncode,
                output=(result.stderr or result.stdout)[:300],
            )
            return False
        log.info("interactive_install_dispatched", uri=uri)
        return True


# ------------------------------------------------------------------
# Dispatcher
# ------------------------------------------------------------------


class InstallDispatcher:
    """Try the privileged path, fall back to the interactive one."""

    def __init__(self, privileged: PrivilegedInstaller, interactive: InteractiveInstaller) -> None:
        self._privileged = privileged
        self._interactive = interactive

    async def install(self, artifact: Path) -> InstallStrategy | None:
        """Dispatch *artifact*; returns the strategy used, or None if none worked."""
        if not artifact.is_file():
            log.error("install_artifact_missing", path=str(artifact))
            return None

        if await self._privileged.dispatch(artifact):
            return InstallStrategy.PRIVILEGED

        log.info("install_falling_back_to_interactive")
        if await self._interactive.dispatch(artifact):
            return InstallStrategy.INTERACTIVE
        return None

    async def wait_pending(self, timeout: float | None = PM_INSTALL_TIMEOUT) -> bool:
        """Wait for privileged commits started by earlier dispatches."""
        return await self._privileged.wait_pending(timeout)
