"""Connectivity monitor.

Reports whether the device currently has a network path that the
deployment accepts for updates.  Purely observational: the orchestrator
polls it on a timer.

Two deployment modes exist:

- **restricted**: only the restricted-class transport (Wi-Fi by default)
  is eligible, so metered links are never used for downloads.
- **any**: any transport with a default route is eligible.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Protocol

from bootstrap_agent.config import ConnectivityMode
from bootstrap_agent.constants import ROUTE_PROBE_TIMEOUT
from bootstrap_agent.logging import get_logger
from bootstrap_agent.runner import CommandRunner

log = get_logger("bootstrap_agent.connectivity")

_DEV_RE = re.compile(r"\bdev\s+(\S+)")


class Transport(Enum):
    NONE = "none"
    WIFI = "wifi"
    CELLULAR = "cellular"
    ETHERNET = "ethernet"
    OTHER = "other"


class ConnectivityClass(Enum):
    NONE = "none"
    RESTRICTED = "restricted"
    UNRESTRICTED = "unrestricted"


_TRANSPORT_LABELS = {
    Transport.NONE: "Not connected",
    Transport.WIFI: "Wi-Fi",
    Transport.CELLULAR: "Mobile Data",
    Transport.ETHERNET: "Ethernet",
    Transport.OTHER: "Connected",
}

# Interface name prefix -> transport; first match wins
_INTERFACE_PREFIXES: tuple[tuple[str, Transport], ...] = (
    ("wlan", Transport.WIFI),
    ("wl", Transport.WIFI),
    ("rmnet", Transport.CELLULAR),
    ("ccmni", Transport.CELLULAR),
    ("wwan", Transport.CELLULAR),
    ("ppp", Transport.CELLULAR),
    ("eth", Transport.ETHERNET),
    ("en", Transport.ETHERNET),
    ("usb", Transport.ETHERNET),
)


def transport_for_interface(ifname: str) -> Transport:
    """Map a network interface name to its transport."""
    name = ifname.strip().lower()
    if not name or name == "lo":
        return Transport.NONE
    for prefix, transport in _INTERFACE_PREFIXES:
        if name.startswith(prefix):
            return transport
    return Transport.OTHER


class TransportProbe(Protocol):
    async def current_transport(self) -> Transport: ...


class RouteTransportProbe:
    """Detect the active transport from the kernel's egress route.

    ``ip -o route get <address>`` prints the interface the device would
    use to reach the internet; no route means no connectivity.
    """

    def __init__(self, runner: CommandRunner | None = None, probe_address: str = "1.1.1.1") -> None:
        self._runner = runner or CommandRunner()
        self._address = probe_address

    async def current_transport(self) -> Transport:
        result = await self._runner.run(
            ["ip", "-o", "route", "get", self._address],
            timeout=ROUTE_PROBE_TIMEOUT,
        )
        if not result.ok:
            return Transport.NONE
        match = _DEV_RE.search(result.stdout)
        if match is None:
            return Transport.NONE
        return transport_for_interface(match.group(1))


class ConnectivityMonitor:
    """Classify the current connection and decide update eligibility."""

    def __init__(
        self,
        probe: TransportProbe,
        mode: ConnectivityMode = ConnectivityMode.ANY,
        restricted_transport: Transport = Transport.WIFI,
    ) -> None:
        self._probe = probe
        self._mode = mode
        self._restricted = restricted_transport

    @property
    def mode(self) -> ConnectivityMode:
        return self._mode

    async def _transport(self) -> Transport:
        try:
            return await self._probe.current_transport()
        except Exception as exc:
            log.warning("connectivity_probe_failed", error=str(exc))
            return Transport.NONE

    async def classify(self) -> ConnectivityClass:
        transport = await self._transport()
        if transport is Transport.NONE:
            return ConnectivityClass.NONE
        if transport is self._restricted:
            return ConnectivityClass.RESTRICTED
        return ConnectivityClass.UNRESTRICTED

    async def is_eligible(self) -> bool:
        """True when the current connection may be used for an update."""
        cls = await self.classify()
        if self._mode is ConnectivityMode.RESTRICTED:
            eligible = cls is ConnectivityClass.RESTRICTED
        else:
            eligible = cls is not ConnectivityClass.NONE
        log.debug("connectivity_checked", classification=cls.value, eligible=eligible)
        return eligible

    async def connection_type(self) -> str:
        """Human-readable connection description for status display."""
        return _TRANSPORT_LABELS[await self._transport()]
