"""
Rule compiler for netsim.

Applies and removes traffic-shaping topologies on live interfaces by
executing the operations planned by netsim.topology. Every apply starts
from a clean baseline: the interface is torn down first and rebuilt from
scratch, so a partial failure is always repaired by the next apply or reset.
"""

import logging
import threading
from dataclasses import replace
from enum import Enum
from typing import Optional

from .exceptions import CapabilityUnavailableError, InvalidSpecError
from .executor import CommandExecutor, Deadline
from .impairment import Direction, ImpairmentSpec
from .preflight import HostCapabilities
from .topology import PrimitiveOp, effective_device, plan, teardown_plan

logger = logging.getLogger(__name__)


class ShapingState(str, Enum):
    """Advisory per-interface state; the kernel remains authoritative."""

    CLEAN = "clean"
    APPLYING = "applying"
    APPLIED = "applied"
    RESETTING = "resetting"


class RuleCompiler:
    """
    Compiles impairment specs into tc operations and runs them.

    Kernel-mutating sequences are serialized by one lock: every interface
    shares the same IFB device, so two sequences must never interleave.

    Example:
        >>> compiler = RuleCompiler(CommandExecutor(), HostCapabilities(), 2023)
        >>> compiler.apply(ImpairmentSpec(interface="eth0",
        ...                               direction=Direction.OUTGOING,
        ...                               delay_ms=100))
        >>> compiler.reset("eth0")
    """

    def __init__(
        self,
        executor: CommandExecutor,
        capabilities: HostCapabilities,
        control_plane_port: Optional[int] = None,
    ):
        """
        Initialize the compiler.

        Args:
            executor: Runs the compiled commands.
            capabilities: Kernel facilities detected at startup.
            control_plane_port: Port of this service's API; filled into specs
                that do not carry one.
        """
        self.executor = executor
        self.capabilities = capabilities
        self.control_plane_port = control_plane_port
        self._lock = threading.Lock()
        self._states: dict[str, ShapingState] = {}

    def state(self, interface: str) -> ShapingState:
        return self._states.get(interface, ShapingState.CLEAN)

    def _transition(self, interface: str, state: ShapingState) -> None:
        previous = self.state(interface)
        if previous is not state:
            logger.debug(f"{interface}: {previous.value} -> {state.value}")
        # Clean interfaces are not tracked; state() defaults to CLEAN.
        if state is ShapingState.CLEAN:
            self._states.pop(interface, None)
        else:
            self._states[interface] = state

    def plan(self, spec: ImpairmentSpec) -> list[PrimitiveOp]:
        """
        Validate a spec and plan its operations without executing anything.

        Raises:
            InvalidSpecError: If required fields are missing or out of range.
            CapabilityUnavailableError: For incoming shaping without IFB.
        """
        if spec.control_plane_port is None and self.control_plane_port is not None:
            spec = replace(spec, control_plane_port=self.control_plane_port)
        spec.validate()

        if (
            spec.direction is Direction.INCOMING
            and not self.capabilities.redirect_available
        ):
            raise CapabilityUnavailableError(
                "ifb", "module not loaded, incoming rules cannot be applied"
            )

        return plan(spec, self.capabilities)

    def apply(self, spec: ImpairmentSpec, timeout: Optional[float] = None) -> None:
        """
        Replace whatever is configured on the interface with the spec.

        Args:
            spec: Impairment spec to realize.
            timeout: Budget in seconds for the whole teardown + apply sequence.

        Raises:
            InvalidSpecError: If the spec fails validation.
            CapabilityUnavailableError: For incoming shaping without IFB.
            CommandFailedError: If an operation fails; the error names the
                stage and carries the raw tool output. Operations that already
                ran are left in place.
        """
        ops = self.plan(spec)
        if not ops:
            logger.info(f"No rules specified for {spec.interface}, nothing to apply")
            return

        deadline = Deadline(timeout)
        with self._lock:
            self._teardown(spec.interface, deadline)

            self._transition(spec.interface, ShapingState.APPLYING)
            device = effective_device(spec, self.capabilities)
            logger.info(
                f"Applying {len(ops)} operations to {spec.interface} "
                f"({spec.direction.value}, device {device})"
            )
            for op in ops:
                self.executor.run_op(op, deadline=deadline)
            self._transition(spec.interface, ShapingState.APPLIED)

        logger.info(f"Applied {spec.direction.value} rules to {spec.interface}")

    def reset(self, interface: str, timeout: Optional[float] = None) -> None:
        """
        Remove any shaping from an interface.

        Objects that are already absent count as removed, so resetting an
        unconfigured interface succeeds.

        Raises:
            InvalidSpecError: If no interface is given.
            CommandFailedError: If a deletion fails for another reason.
        """
        if not interface:
            raise InvalidSpecError("'iface' is required")

        with self._lock:
            self._teardown(interface, Deadline(timeout))
        logger.info(f"Reset rules on {interface}")

    def _teardown(self, interface: str, deadline: Deadline) -> None:
        self._transition(interface, ShapingState.RESETTING)
        for op in teardown_plan(interface, self.capabilities):
            self.executor.run_op(op, deadline=deadline)
        self._transition(interface, ShapingState.CLEAN)

    def status(self, interface: str) -> dict:
        """
        Get the live qdisc configuration of an interface.

        Returns:
            Dictionary with interface, advisory state and tc output.
        """
        if not interface:
            raise InvalidSpecError("'iface' is required")

        result = self.executor.run(["tc", "qdisc", "show", "dev", interface], check=False)
        status = {
            "interface": interface,
            "state": self.state(interface).value,
            "tc_output": result.output,
            "active": "htb" in result.output or "netem" in result.output,
        }

        if self.capabilities.redirect_available:
            device = self.capabilities.redirect_device
            ifb_result = self.executor.run(
                ["tc", "qdisc", "show", "dev", device], check=False
            )
            status["redirect_device"] = device
            status["ingress_active"] = "ingress" in result.output
            status["redirect_tc_output"] = ifb_result.output

        return status
