"""
Host network interface inventory.

Lists the interfaces traffic shaping can be applied to: up, not loopback,
not point-to-point, and holding at least one IPv4 or IPv6 address.
"""

import logging
import socket
from dataclasses import dataclass
from typing import Optional

import psutil

from .exceptions import InterfaceQueryError

logger = logging.getLogger(__name__)


@dataclass
class HostInterface:
    """A usable host interface and its first IPv4/IPv6 address."""

    name: str
    ipv4: Optional[str] = None
    ipv6: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"name": self.name}
        if self.ipv4:
            data["ipv4"] = self.ipv4
        if self.ipv6:
            data["ipv6"] = self.ipv6
        return data


def _flags(stats) -> set[str]:
    # psutil reports flags as "up,broadcast,running,multicast"
    return set(filter(None, getattr(stats, "flags", "").split(",")))


def list_usable_interfaces() -> list[HostInterface]:
    """
    Enumerate the interfaces that can be shaped.

    Interfaces without any address are skipped silently. The order is the
    one reported by the OS.

    Returns:
        List of HostInterface.

    Raises:
        InterfaceQueryError: If the OS cannot enumerate interfaces.
    """
    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except OSError as e:
        raise InterfaceQueryError(f"query interfaces: {e}")

    logger.debug(f"Found {len(addrs)} total system interfaces. Filtering...")

    interfaces: list[HostInterface] = []
    for name, addresses in addrs.items():
        if_stats = stats.get(name)
        if if_stats is None:
            continue
        flags = _flags(if_stats)
        if "pointopoint" in flags:
            continue
        if not if_stats.isup:
            continue
        if "loopback" in flags or name == "lo":
            continue

        iface = HostInterface(name=name)
        for addr in addresses:
            if addr.family == socket.AF_INET and iface.ipv4 is None:
                iface.ipv4 = addr.address
            elif addr.family == socket.AF_INET6 and iface.ipv6 is None:
                iface.ipv6 = addr.address.split("%", 1)[0]

        if iface.ipv4 or iface.ipv6:
            interfaces.append(iface)
            logger.debug(f"Added {name} to usable interfaces")

    return interfaces
