"""
Default gateway mode.

Turns the host into a NAT gateway so clients routed through it experience
the configured impairments.
"""

import logging
import shutil
from typing import Optional

from .exceptions import CommandFailedError, GatewayError
from .executor import CommandExecutor

logger = logging.getLogger(__name__)


def parse_default_route(output: str) -> Optional[str]:
    """
    Extract the device of the default route from ``ip route show default``.

    Example:
        >>> parse_default_route("default via 10.0.0.1 dev eth0 proto dhcp")
        'eth0'
    """
    for line in output.splitlines():
        parts = line.split()
        if not parts or parts[0] != "default":
            continue
        for i, part in enumerate(parts[:-1]):
            if part == "dev":
                return parts[i + 1]
    return None


def _run(executor: CommandExecutor, argv: list[str], what: str) -> str:
    logger.info(f"GATEWAY_MODE: Running command: {' '.join(argv)}")
    try:
        return executor.run(argv).output
    except CommandFailedError as e:
        raise GatewayError(f"failed to {what}: {e}")


def enable_gateway_mode(
    executor: CommandExecutor, reconfigure_firewall: bool = False
) -> str:
    """
    Enable IP forwarding and NAT towards the default route's device.

    Args:
        executor: Executor for sysctl, ip, iptables and ufw.
        reconfigure_firewall: Disable ufw if it is installed.

    Returns:
        Name of the WAN interface.

    Raises:
        GatewayError: If any step fails.
    """
    logger.info("GATEWAY_MODE: Enabling Default Gateway Mode...")

    _run(executor, ["sysctl", "-w", "net.ipv4.ip_forward=1"], "set net.ipv4.ip_forward")

    routes = _run(executor, ["ip", "route", "show", "default"], "get default route")
    wan = parse_default_route(routes)
    if wan is None:
        raise GatewayError(
            f"could not parse default route to find 'dev' interface from: {routes.strip()}"
        )
    logger.info(f"GATEWAY_MODE: Detected WAN interface: {wan}")

    _run(
        executor,
        ["iptables", "-t", "nat", "-A", "POSTROUTING", "-o", wan, "-j", "MASQUERADE"],
        "apply NAT/MASQUERADE rule",
    )
    _run(
        executor,
        ["iptables", "-A", "FORWARD", "-o", wan, "-j", "ACCEPT"],
        "apply FORWARD (out) rule",
    )
    _run(
        executor,
        ["iptables", "-A", "FORWARD", "-m", "state",
         "--state", "RELATED,ESTABLISHED", "-j", "ACCEPT"],
        "apply FORWARD (state) rule",
    )

    if reconfigure_firewall:
        if shutil.which("ufw"):
            _run(executor, ["ufw", "disable"], "disable ufw, please do this manually")
            logger.info("GATEWAY_MODE: ufw disabled successfully.")
        else:
            logger.info("GATEWAY_MODE: ufw not found, skipping host firewall reconfiguration.")
    else:
        logger.warning(
            "GATEWAY_MODE: If ufw is active, it may block forwarded traffic. "
            "Set RECONFIGURE_FIREWALL=true or configure ufw manually."
        )

    logger.info("GATEWAY_MODE: Successfully enabled. Host is now a gateway.")
    return wan
