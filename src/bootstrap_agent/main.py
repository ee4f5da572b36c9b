"""Main entry point for Bootstrap Agent."""

import argparse
import asyncio
import contextlib
import signal
import sys
from functools import partial

from bootstrap_agent.config import Settings, get_settings
from bootstrap_agent.connectivity import ConnectivityMonitor, RouteTransportProbe, Transport
from bootstrap_agent.fetcher import ArtifactFetcher
from bootstrap_agent.installer import InstallDispatcher, InteractiveInstaller, PrivilegedInstaller
from bootstrap_agent.logging import get_logger, setup_logging
from bootstrap_agent.manifest import ManifestResolver
from bootstrap_agent.models import OrchestratorState
from bootstrap_agent.orchestrator import UpdateOrchestrator
from bootstrap_agent.registry import PmPackageRegistry
from bootstrap_agent.runner import CommandRunner
from bootstrap_agent.status import StatusBus, console_listener, publish_install_result


def build_monitor(settings: Settings, runner: CommandRunner | None = None) -> ConnectivityMonitor:
    probe = RouteTransportProbe(runner, settings.connectivity_probe_address)
    return ConnectivityMonitor(
        probe,
        mode=settings.connectivity_mode,
        restricted_transport=Transport(settings.restricted_transport),
    )


def build_orchestrator(
    settings: Settings,
    runner: CommandRunner | None = None,
    status_bus: StatusBus | None = None,
) -> UpdateOrchestrator:
    """Wire the production components together."""
    runner = runner or CommandRunner()
    bus = status_bus or StatusBus()

    dispatcher = InstallDispatcher(
        PrivilegedInstaller(
            settings.target_package,
            runner,
            enabled=settings.privileged_install,
            on_result=partial(publish_install_result, bus),
        ),
        InteractiveInstaller(runner, authority=settings.file_provider_authority),
    )
    return UpdateOrchestrator(
        settings,
        monitor=build_monitor(settings, runner),
        resolver=ManifestResolver(),
        fetcher=ArtifactFetcher(settings.artifact_path, settings.http_timeout_seconds),
        registry=PmPackageRegistry(runner),
        dispatcher=dispatcher,
        status_bus=bus,
    )


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bootstrap-agent",
        description="Keep the managed application at its latest published build.",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run one update activation (default)")
    sub.add_parser("status", help="Show connectivity and installed build")
    return parser


async def _status(settings: Settings) -> int:
    runner = CommandRunner()
    monitor = build_monitor(settings, runner)
    installed = await PmPackageRegistry(runner).installed_state(settings.target_package)

    print(f"Package:      {settings.target_package}")
    print(f"Installed:    {installed.build_number if installed.installed else 'not installed'}")
    print(f"Connection:   {await monitor.connection_type()}")
    print(f"Mode:         {monitor.mode.value}")
    print(f"Eligible:     {'yes' if await monitor.is_eligible() else 'no'}")
    return 0


async def _run(settings: Settings) -> int:
    log = get_logger("bootstrap_agent.main")
    log.info(
        "starting_bootstrap_agent",
        environment=settings.environment,
        package=settings.target_package,
        manifest_url=settings.manifest_url,
        connectivity_mode=settings.connectivity_mode.value,
    )

    orchestrator = build_orchestrator(settings)
    orchestrator.status_bus.subscribe(console_listener)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform's event loop
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(orchestrator.shutdown()))

    orchestrator.activate()
    try:
        final = await orchestrator.wait()
    finally:
        await orchestrator.shutdown()
    log.info("bootstrap_agent_stopped", state=final.value)
    return 1 if final is OrchestratorState.CANCELLED else 0


async def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    args = _parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings)

    if args.command == "status":
        return await _status(settings)
    return await _run(settings)


def run() -> None:
    """Run the application."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
