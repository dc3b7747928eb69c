"""
Topology builder for netsim.

Turns an ImpairmentSpec into the ordered tc/ip operations that realize it
and the operations that remove it again. Everything here is pure: operations
are symbolic values and only become argument vectors when the executor runs
them.

Resulting layout on the effective device::

    1:   htb root, default 1:20
    ├── 1:10  control class, unlimited      <- prio 1, control-plane port
    └── 1:20  simulated class, rate limit   <- prio 2, everything else
        └── 20:  netem (delay, loss, ...)

For incoming traffic the tree lives on the IFB device and the real interface
gets an ingress qdisc whose filter mirrors every packet to the IFB device.
"""

from dataclasses import dataclass
from typing import ClassVar, Optional

from .exceptions import CapabilityUnavailableError
from .impairment import Direction, ImpairmentSpec
from .preflight import HostCapabilities

ROOT_HANDLE = "1:"
CONTROL_CLASSID = "1:10"
SIMULATED_CLASSID = "1:20"
SIMULATED_MINOR = "20"
NETEM_HANDLE = "20:"
INGRESS_HANDLE = "ffff:"

# 10 Gbit/s, effectively unconstrained for the classes that must not shape
UNLIMITED_RATE_KBIT = 10_000_000

CONTROL_FILTER_PRIO = 1
CATCH_ALL_FILTER_PRIO = 2


def _num(value: float) -> str:
    """Render a number at full precision without a trailing '.0'."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class PrimitiveOp:
    """A single tc/ip operation against one device."""

    device: str

    # Deletions tolerate "already absent" failures
    lenient: ClassVar[bool] = False

    @property
    def stage(self) -> str:
        raise NotImplementedError

    def argv(self) -> list[str]:
        raise NotImplementedError


@dataclass(frozen=True)
class BringUpRedirectDevice(PrimitiveOp):
    @property
    def stage(self) -> str:
        return f"bring up redirect device {self.device}"

    def argv(self) -> list[str]:
        return ["ip", "link", "set", "dev", self.device, "up"]


@dataclass(frozen=True)
class AddIngressQdisc(PrimitiveOp):
    @property
    def stage(self) -> str:
        return f"add ingress qdisc on {self.device}"

    def argv(self) -> list[str]:
        return ["tc", "qdisc", "add", "dev", self.device, "handle", INGRESS_HANDLE, "ingress"]


@dataclass(frozen=True)
class AddRedirectFilter(PrimitiveOp):
    target: str

    @property
    def stage(self) -> str:
        return f"redirect ingress of {self.device} to {self.target}"

    def argv(self) -> list[str]:
        return [
            "tc", "filter", "add", "dev", self.device,
            "parent", INGRESS_HANDLE,
            "protocol", "all",
            "u32", "match", "u32", "0", "0",
            "action", "mirred", "egress", "redirect", "dev", self.target,
        ]


@dataclass(frozen=True)
class AddRootQdisc(PrimitiveOp):
    @property
    def stage(self) -> str:
        return f"add root htb qdisc on {self.device}"

    def argv(self) -> list[str]:
        return [
            "tc", "qdisc", "add", "dev", self.device,
            "root", "handle", ROOT_HANDLE, "htb", "default", SIMULATED_MINOR,
        ]


@dataclass(frozen=True)
class AddClass(PrimitiveOp):
    classid: str
    rate_kbit: int
    name: str

    @property
    def stage(self) -> str:
        return f"add {self.name} class {self.classid} on {self.device}"

    def argv(self) -> list[str]:
        rate = f"{self.rate_kbit}kbit"
        return [
            "tc", "class", "add", "dev", self.device,
            "parent", ROOT_HANDLE, "classid", self.classid,
            "htb", "rate", rate, "ceil", rate,
        ]


@dataclass(frozen=True)
class AddImpairmentQdisc(PrimitiveOp):
    args: tuple[str, ...]
    parent: str = SIMULATED_CLASSID
    handle: str = NETEM_HANDLE

    @property
    def stage(self) -> str:
        return f"add netem qdisc on {self.device}"

    def argv(self) -> list[str]:
        return [
            "tc", "qdisc", "add", "dev", self.device,
            "parent", self.parent, "handle", self.handle, "netem",
            *self.args,
        ]


@dataclass(frozen=True)
class AddFilter(PrimitiveOp):
    """
    Classification filter on the root qdisc.

    With a port it matches IPv4 traffic on that source or destination port;
    without one it matches every packet.
    """

    priority: int
    flowid: str
    port_field: Optional[str] = None
    port: Optional[int] = None

    @property
    def catch_all(self) -> bool:
        return self.port is None

    @property
    def stage(self) -> str:
        if self.catch_all:
            return f"add catch-all filter on {self.device}"
        return f"add control-plane filter ({self.port_field} {self.port}) on {self.device}"

    def argv(self) -> list[str]:
        head = ["tc", "filter", "add", "dev", self.device, "parent", ROOT_HANDLE]
        if self.catch_all:
            match = ["protocol", "all", "prio", str(self.priority),
                     "u32", "match", "u32", "0", "0"]
        else:
            match = ["protocol", "ip", "prio", str(self.priority),
                     "u32", "match", "ip", self.port_field, str(self.port), "0xffff"]
        return head + match + ["flowid", self.flowid]


@dataclass(frozen=True)
class DeleteQdisc(PrimitiveOp):
    scope: str = "root"

    lenient: ClassVar[bool] = True

    @property
    def stage(self) -> str:
        return f"delete {self.scope} qdisc on {self.device}"

    def argv(self) -> list[str]:
        return ["tc", "qdisc", "del", "dev", self.device, self.scope]


def netem_args(spec: ImpairmentSpec) -> list[str]:
    """
    Build the netem argument tokens for a spec.

    Order is fixed: limit, delay [jitter [correlation]] [distribution],
    loss [correlation], corrupt, duplicate, reorder [correlation] [gap].
    Unset fields are omitted entirely.

    Example:
        >>> netem_args(ImpairmentSpec(delay_ms=50, jitter_ms=10,
        ...                           delay_correlation_pct=25, loss_pct=2))
        ['delay', '50ms', '10ms', '25%', 'loss', '2%']
    """
    spec = spec.normalized()
    args: list[str] = []

    if spec.packet_limit is not None:
        args += ["limit", str(spec.packet_limit)]

    if spec.delay_ms is not None:
        args += ["delay", f"{spec.delay_ms}ms"]
        if spec.jitter_ms is not None:
            args.append(f"{spec.jitter_ms}ms")
            if spec.delay_correlation_pct is not None:
                args.append(f"{_num(spec.delay_correlation_pct)}%")
            if spec.distribution is not None:
                args += ["distribution", spec.distribution.value]

    if spec.loss_pct is not None:
        args += ["loss", f"{_num(spec.loss_pct)}%"]
        if spec.loss_correlation_pct is not None:
            args.append(f"{_num(spec.loss_correlation_pct)}%")

    if spec.corrupt_pct is not None:
        args += ["corrupt", f"{_num(spec.corrupt_pct)}%"]

    if spec.duplicate_pct is not None:
        args += ["duplicate", f"{_num(spec.duplicate_pct)}%"]

    if spec.reorder_pct is not None:
        args += ["reorder", f"{_num(spec.reorder_pct)}%"]
        if spec.reorder_correlation_pct is not None:
            args.append(f"{_num(spec.reorder_correlation_pct)}%")
        if spec.reorder_gap_packets is not None:
            args += ["gap", str(spec.reorder_gap_packets)]

    return args


def effective_device(spec: ImpairmentSpec, capabilities: HostCapabilities) -> str:
    """Device the HTB tree is attached to for this spec."""
    if spec.direction is Direction.INCOMING:
        return capabilities.redirect_device
    return spec.interface


def plan(spec: ImpairmentSpec, capabilities: HostCapabilities) -> list[PrimitiveOp]:
    """
    Plan the operations that realize a spec on a clean interface.

    Args:
        spec: Validated impairment spec.
        capabilities: Kernel facilities of this host.

    Returns:
        Ordered operations; empty when the spec sets no rate and no netem
        impairment.

    Raises:
        CapabilityUnavailableError: For incoming shaping without IFB support.
    """
    spec = spec.normalized()
    if spec.is_noop():
        return []

    ops: list[PrimitiveOp] = []
    device = effective_device(spec, capabilities)

    if spec.direction is Direction.INCOMING:
        if not capabilities.redirect_available:
            raise CapabilityUnavailableError(
                "ifb", "module not loaded, incoming rules cannot be applied"
            )
        ops += [
            BringUpRedirectDevice(device),
            AddIngressQdisc(spec.interface),
            AddRedirectFilter(spec.interface, target=device),
        ]

    ops += [
        AddRootQdisc(device),
        AddClass(device, CONTROL_CLASSID, UNLIMITED_RATE_KBIT, "control"),
        AddClass(
            device,
            SIMULATED_CLASSID,
            spec.rate_limit_kbit or UNLIMITED_RATE_KBIT,
            "simulated",
        ),
    ]

    args = netem_args(spec)
    if args:
        ops.append(AddImpairmentQdisc(device, tuple(args)))

    if spec.control_plane_port is not None:
        port_field = "dport" if spec.direction is Direction.INCOMING else "sport"
        ops.append(
            AddFilter(
                device,
                CONTROL_FILTER_PRIO,
                CONTROL_CLASSID,
                port_field=port_field,
                port=spec.control_plane_port,
            )
        )
    ops.append(AddFilter(device, CATCH_ALL_FILTER_PRIO, SIMULATED_CLASSID))

    return ops


def teardown_plan(interface: str, capabilities: HostCapabilities) -> list[DeleteQdisc]:
    """
    Plan the removal of any configuration from an interface.

    Deleting a root or ingress qdisc drops its classes and filters with it.
    The redirect device is cleared too when this host has one.
    """
    ops = [
        DeleteQdisc(interface, "root"),
        DeleteQdisc(interface, "ingress"),
    ]
    if capabilities.redirect_available:
        ops.append(DeleteQdisc(capabilities.redirect_device, "root"))
    return ops
