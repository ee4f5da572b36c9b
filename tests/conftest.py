"""Shared fixtures for Bootstrap Agent tests."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from bootstrap_agent.config import get_settings
from bootstrap_agent.runner import CommandResult

Responder = Callable[[list[str]], CommandResult]


class FakeRunner:
    """Records commands and answers them from a prefix table.

    Keys are command prefixes (tuples); the longest matching prefix wins.
    Unmatched commands fail with exit code 127.
    """

    def __init__(self, responses: dict[tuple[str, ...], CommandResult | Responder] | None = None):
        self.responses = dict(responses or {})
        self.calls: list[list[str]] = []

    async def run(self, args: list[str], *, timeout: float = 30) -> CommandResult:
        self.calls.append(list(args))
        best: tuple[str, ...] | None = None
        for prefix in self.responses:
            if tuple(args[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return CommandResult(127, "", f"Command not found: {args[0]}")
        response = self.responses[best]
        return response(args) if callable(response) else response

    def commands(self, *prefix: str) -> list[list[str]]:
        return [c for c in self.calls if tuple(c[: len(prefix)]) == prefix]


@pytest.fixture()
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Isolate tests from cached settings."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
