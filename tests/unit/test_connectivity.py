"""Tests for bootstrap_agent.connectivity."""

from __future__ import annotations

import pytest

from bootstrap_agent.config import ConnectivityMode
from bootstrap_agent.connectivity import (
    ConnectivityClass,
    ConnectivityMonitor,
    RouteTransportProbe,
    Transport,
    transport_for_interface,
)
from bootstrap_agent.runner import CommandResult


class StaticProbe:
    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    async def current_transport(self) -> Transport:
        return self.transport


class BrokenProbe:
    async def current_transport(self) -> Transport:
        raise RuntimeError("netlink unavailable")


# ---------------------------------------------------------------------------
# Interface mapping / route probe
# ---------------------------------------------------------------------------


class TestTransportForInterface:
    @pytest.mark.parametrize(
        ("ifname", "expected"),
        [
            ("wlan0", Transport.WIFI),
            ("wlp2s0", Transport.WIFI),
            ("rmnet_data0", Transport.CELLULAR),
            ("ccmni1", Transport.CELLULAR),
            ("eth0", Transport.ETHERNET),
            ("enp3s0", Transport.ETHERNET),
            ("tun0", Transport.OTHER),
            ("lo", Transport.NONE),
            ("", Transport.NONE),
        ],
    )
    def test_mapping(self, ifname, expected):
        assert transport_for_interface(ifname) is expected


class TestRouteTransportProbe:
    async def test_parses_egress_device(self, fake_runner):
        fake_runner.responses[("ip", "-o", "route", "get")] = CommandResult(
            0, "1.1.1.1 via 192.168.1.1 dev wlan0 src 192.168.1.23 uid 0 \\    cache\n"
        )
        probe = RouteTransportProbe(fake_runner, "1.1.1.1")

        assert await probe.current_transport() is Transport.WIFI
        assert fake_runner.calls == [["ip", "-o", "route", "get", "1.1.1.1"]]

    async def test_no_route_is_none(self, fake_runner):
        fake_runner.responses[("ip",)] = CommandResult(2, "", "RTNETLINK answers: Network is unreachable")
        assert await RouteTransportProbe(fake_runner).current_transport() is Transport.NONE

    async def test_output_without_device_is_none(self, fake_runner):
        fake_runner.responses[("ip",)] = CommandResult(0, "unreachable 1.1.1.1")
        assert await RouteTransportProbe(fake_runner).current_transport() is Transport.NONE


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class TestConnectivityMonitor:
    async def test_classify(self):
        assert await ConnectivityMonitor(StaticProbe(Transport.NONE)).classify() is (
            ConnectivityClass.NONE
        )
        assert await ConnectivityMonitor(StaticProbe(Transport.WIFI)).classify() is (
            ConnectivityClass.RESTRICTED
        )
        assert await ConnectivityMonitor(StaticProbe(Transport.CELLULAR)).classify() is (
            ConnectivityClass.UNRESTRICTED
        )

    @pytest.mark.parametrize(
        ("transport", "eligible"),
        [
            (Transport.WIFI, True),
            (Transport.CELLULAR, False),
            (Transport.ETHERNET, False),
            (Transport.NONE, False),
        ],
    )
    async def test_restricted_mode(self, transport, eligible):
        monitor = ConnectivityMonitor(StaticProbe(transport), mode=ConnectivityMode.RESTRICTED)
        assert await monitor.is_eligible() is eligible

    @pytest.mark.parametrize(
        ("transport", "eligible"),
        [
            (Transport.WIFI, True),
            (Transport.CELLULAR, True),
            (Transport.OTHER, True),
            (Transport.NONE, False),
        ],
    )
    async def test_any_mode(self, transport, eligible):
        monitor = ConnectivityMonitor(StaticProbe(transport), mode=ConnectivityMode.ANY)
        assert await monitor.is_eligible() is eligible

    async def test_custom_restricted_transport(self):
        monitor = ConnectivityMonitor(
            StaticProbe(Transport.ETHERNET),
            mode=ConnectivityMode.RESTRICTED,
            restricted_transport=Transport.ETHERNET,
        )
        assert await monitor.is_eligible() is True

    async def test_probe_failure_means_not_connected(self):
        monitor = ConnectivityMonitor(BrokenProbe())
        assert await monitor.classify() is ConnectivityClass.NONE
        assert await monitor.is_eligible() is False

    async def test_reflects_changes_between_calls(self):
        probe = StaticProbe(Transport.NONE)
        monitor = ConnectivityMonitor(probe)
        assert await monitor.is_eligible() is False
        probe.transport = Transport.WIFI
        assert await monitor.is_eligible() is True

    @pytest.mark.parametrize(
        ("transport", "label"),
        [
            (Transport.WIFI, "Wi-Fi"),
            (Transport.CELLULAR, "Mobile Data"),
            (Transport.ETHERNET, "Ethernet"),
            (Transport.OTHER, "Connected"),
            (Transport.NONE, "Not connected"),
        ],
    )
    async def test_connection_type(self, transport, label):
        assert await ConnectivityMonitor(StaticProbe(transport)).connection_type() == label
