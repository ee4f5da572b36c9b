"""Installed-package registry queries."""

from __future__ import annotations

import re
from typing import Protocol

from bootstrap_agent.constants import PM_QUERY_TIMEOUT
from bootstrap_agent.logging import get_logger
from bootstrap_agent.models import InstalledState
from bootstrap_agent.runner import CommandRunner

log = get_logger("bootstrap_agent.registry")

_PM_LINE_RE = re.compile(r"^package:(?P<name>\S+)\s+versionCode:(?P<code>\d+)")


class PackageRegistry(Protocol):
    async def installed_state(self, package: str) -> InstalledState: ...


def parse_pm_list_output(output: str, package: str) -> int | None:
    """Return the versionCode of *package* from ``pm list packages`` output.

    ``pm`` filters by substring, so only an exact name match counts.
    """
    for line in output.splitlines():
        m = _PM_LINE_RE.match(line.strip())
        if m is not None and m.group("name") == package:
            return int(m.group("code"))
    return None


class PmPackageRegistry:
    """Reads installed builds through the platform package manager."""

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or CommandRunner()

    async def installed_state(self, package: str) -> InstalledState:
        result = await self._runner.run(
            ["pm", "list", "packages", "--show-versioncode", package],
            timeout=PM_QUERY_TIMEOUT,
        )
        if not result.ok:
            # Treated as not installed so the device still converges
            log.warning(
                "registry_query_failed",
                package=package,
                returncode=result.returncode,
                stderr=result.stderr[:200],
            )
            return InstalledState(None)

        build = parse_pm_list_output(result.stdout, package)
        log.debug("registry_queried", package=package, build=build)
        return InstalledState(build)
