"""
Shutdown cleanup of traffic-control rules.
"""

import logging
from typing import Callable, Optional

from .compiler import RuleCompiler
from .exceptions import NetSimError
from .inventory import HostInterface, list_usable_interfaces

logger = logging.getLogger(__name__)


class LifecycleManager:
    """
    Resets every usable interface when the service stops.

    The sweep is best-effort and sequential: a failing interface is logged
    and skipped, the remaining ones are still reset. A killed process leaves
    its rules behind; the next apply or reset clears them.
    """

    def __init__(
        self,
        compiler: RuleCompiler,
        inventory: Callable[[], list[HostInterface]] = list_usable_interfaces,
        reset_timeout: Optional[float] = None,
    ):
        self.compiler = compiler
        self.inventory = inventory
        self.reset_timeout = reset_timeout

    def sweep(self) -> list[str]:
        """
        Reset all usable interfaces one after another.

        Returns:
            Names of the interfaces whose reset failed.
        """
        try:
            interfaces = self.inventory()
        except NetSimError as e:
            logger.error(f"Cleanup skipped, cannot list interfaces: {e}")
            return []

        failed: list[str] = []
        for iface in interfaces:
            logger.info(f"Cleaning up tc rules on {iface.name}")
            try:
                self.compiler.reset(iface.name, timeout=self.reset_timeout)
            except NetSimError as e:
                logger.error(f"Failed to clean up {iface.name}: {e}")
                failed.append(iface.name)

        return failed
