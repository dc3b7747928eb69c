"""Tests for default gateway mode."""

import subprocess

import pytest

from netsim import CommandExecutor
from netsim.exceptions import GatewayError
from netsim.gateway import enable_gateway_mode, parse_default_route


def test_parse_default_route():
    output = "default via 192.168.1.1 dev enp3s0 proto dhcp metric 100\n"

    assert parse_default_route(output) == "enp3s0"
    assert parse_default_route("10.0.0.0/24 dev eth0 scope link\n") is None


def _routes(mocker, route_output, fail_on=None):
    calls = []

    def run(argv, **kwargs):
        calls.append(" ".join(argv))
        if fail_on and fail_on in " ".join(argv):
            return subprocess.CompletedProcess(argv, 1, stdout="iptables: Permission denied\n")
        if argv[:2] == ["ip", "route"]:
            return subprocess.CompletedProcess(argv, 0, stdout=route_output)
        return subprocess.CompletedProcess(argv, 0, stdout="")

    mocker.patch("netsim.executor.subprocess.run", side_effect=run)
    return calls


def test_enable_gateway_mode(mocker):
    calls = _routes(mocker, "default via 10.0.0.1 dev eth0\n")
    mocker.patch("netsim.gateway.shutil.which", return_value=None)

    wan = enable_gateway_mode(CommandExecutor(), reconfigure_firewall=True)

    assert wan == "eth0"
    assert calls == [
        "sysctl -w net.ipv4.ip_forward=1",
        "ip route show default",
        "iptables -t nat -A POSTROUTING -o eth0 -j MASQUERADE",
        "iptables -A FORWARD -o eth0 -j ACCEPT",
        "iptables -A FORWARD -m state --state RELATED,ESTABLISHED -j ACCEPT",
    ]


def test_disables_ufw_when_asked(mocker):
    calls = _routes(mocker, "default via 10.0.0.1 dev eth0\n")
    mocker.patch("netsim.gateway.shutil.which", return_value="/usr/sbin/ufw")

    enable_gateway_mode(CommandExecutor(), reconfigure_firewall=True)

    assert calls[-1] == "ufw disable"


def test_no_default_route(mocker):
    _routes(mocker, "")

    with pytest.raises(GatewayError, match="could not parse default route"):
        enable_gateway_mode(CommandExecutor())


def test_iptables_failure(mocker):
    _routes(mocker, "default via 10.0.0.1 dev eth0\n", fail_on="MASQUERADE")

    with pytest.raises(GatewayError, match="NAT/MASQUERADE"):
        enable_gateway_mode(CommandExecutor())
