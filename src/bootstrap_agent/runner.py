"""Subprocess helper for platform tools (``ip``, ``pm``, ``am``).

All subprocess calls made by the agent go through ``CommandRunner`` so
tests can replace it with a fake.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from bootstrap_agent.logging import get_logger

log = get_logger("bootstrap_agent.runner")


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Execute platform commands.  Override for testing."""

    async def run(self, args: list[str], *, timeout: float = 30) -> CommandResult:
        """Run *args* without a shell and return its exit code and output.

        Never raises for a failing, missing, or hung command: those map to
        non-zero return codes (127 not found, 124 timeout).
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return CommandResult(127, "", f"Command not found: {args[0]}")
        except OSError as exc:
            return CommandResult(1, "", str(exc))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            try:
                proc.kill()
                await proc.wait()
            except ProcessLookupError:
                pass
            log.warning("command_timeout", cmd=args[0], timeout=timeout)
            return CommandResult(124, "", "Command timed out")
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise

        result = CommandResult(
            proc.returncode or 0,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )
        if not result.ok:
            log.debug(
                "command_failed",
                cmd=args[0],
                returncode=result.returncode,
                stderr=result.stderr[:500],
            )
        return result
