"""
Impairment parameters for netsim.

Defines the ImpairmentSpec dataclass: the validated, normalized description
of the network conditions to emulate on one interface and direction.
"""

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from .exceptions import InvalidSpecError

# Jitter forced onto a delay that requests a distribution without jitter.
MIN_JITTER_MS = 1


class Direction(str, Enum):
    """Traffic direction to shape on an interface."""

    OUTGOING = "outgoing"
    INCOMING = "incoming"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Direction"]:
        """
        Parse a direction name, case-insensitively.

        Returns:
            The Direction, or None when value is empty.

        Raises:
            InvalidSpecError: If the value names no known direction.
        """
        if value is None or not str(value).strip():
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidSpecError(
                f"unknown direction '{value}' (expected 'outgoing' or 'incoming')"
            )


class Distribution(str, Enum):
    """Statistical distribution applied to delay jitter."""

    NONE = "none"
    NORMAL = "normal"
    PARETO = "pareto"
    PARETONORMAL = "paretonormal"
    UNIFORM = "uniform"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Distribution"]:
        if value is None or not str(value).strip():
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(d.value for d in cls)
            raise InvalidSpecError(
                f"unknown delay distribution '{value}' (expected one of: {choices})"
            )


def _parse_int(name: str, value: Any) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidSpecError(f"'{name}' must be a number, got '{value}'")
    if not number.is_integer():
        raise InvalidSpecError(f"'{name}' must be a whole number, got '{value}'")
    return int(number)


def _parse_float(name: str, value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidSpecError(f"'{name}' must be a number, got '{value}'")


# Query parameter name -> (field name, parser)
QUERY_FIELDS: dict[str, tuple[str, Callable[[str, Any], Any]]] = {
    "rate": ("rate_limit_kbit", _parse_int),
    "delay": ("delay_ms", _parse_int),
    "jitter": ("jitter_ms", _parse_int),
    "delayCorrelation": ("delay_correlation_pct", _parse_float),
    "delayDistro": ("distribution", lambda _name, v: Distribution.parse(v)),
    "loss": ("loss_pct", _parse_float),
    "lossCorrelation": ("loss_correlation_pct", _parse_float),
    "corrupt": ("corrupt_pct", _parse_float),
    "duplicate": ("duplicate_pct", _parse_float),
    "reorder": ("reorder_pct", _parse_float),
    "reorderCorrelation": ("reorder_correlation_pct", _parse_float),
    "reorderGap": ("reorder_gap_packets", _parse_int),
    "packetLimit": ("packet_limit", _parse_int),
}

# Parent field -> dependent fields that are dropped when the parent is unset
DEPENDENT_FIELDS: dict[str, tuple[str, ...]] = {
    "delay_ms": ("jitter_ms", "delay_correlation_pct", "distribution"),
    "loss_pct": ("loss_correlation_pct",),
    "reorder_pct": ("reorder_correlation_pct", "reorder_gap_packets"),
}

PERCENT_FIELDS = (
    "delay_correlation_pct",
    "loss_pct",
    "loss_correlation_pct",
    "corrupt_pct",
    "duplicate_pct",
    "reorder_pct",
    "reorder_correlation_pct",
)

NETEM_FIELDS = (
    "delay_ms",
    "loss_pct",
    "corrupt_pct",
    "duplicate_pct",
    "reorder_pct",
    "packet_limit",
)


@dataclass
class ImpairmentSpec:
    """
    Desired network conditions for one interface/direction pair.

    Every impairment field is optional; None means "unset", never zero.

    Attributes:
        interface: Host network device to shape.
        direction: Outgoing (egress) or Incoming (ingress via IFB).
        rate_limit_kbit: Bandwidth limit in kbit/s. None means unlimited.
        delay_ms: Added one-way delay in milliseconds.
        jitter_ms: Delay variation in milliseconds. Requires delay_ms.
        delay_correlation_pct: Correlation between successive delays.
            Requires jitter_ms.
        distribution: Jitter distribution. Requires jitter_ms; a distribution
            requested without jitter forces jitter to MIN_JITTER_MS.
        loss_pct: Random packet loss percentage.
        loss_correlation_pct: Correlation for successive losses.
        corrupt_pct: Single-bit corruption percentage.
        duplicate_pct: Packet duplication percentage.
        reorder_pct: Percentage of packets sent immediately (reordered).
        reorder_correlation_pct: Correlation for successive reorderings.
        reorder_gap_packets: Reorder every Nth packet.
        packet_limit: netem queue limit in packets.
        control_plane_port: Port of the service's own API; never impaired.
    """

    interface: str = ""
    direction: Optional[Direction] = None
    rate_limit_kbit: Optional[int] = None
    delay_ms: Optional[int] = None
    jitter_ms: Optional[int] = None
    delay_correlation_pct: Optional[float] = None
    distribution: Optional[Distribution] = None
    loss_pct: Optional[float] = None
    loss_correlation_pct: Optional[float] = None
    corrupt_pct: Optional[float] = None
    duplicate_pct: Optional[float] = None
    reorder_pct: Optional[float] = None
    reorder_correlation_pct: Optional[float] = None
    reorder_gap_packets: Optional[int] = None
    packet_limit: Optional[int] = None
    control_plane_port: Optional[int] = None

    @classmethod
    def from_query(
        cls,
        params: Mapping[str, str],
        control_plane_port: Optional[int] = None,
        base: Optional["ImpairmentSpec"] = None,
    ) -> "ImpairmentSpec":
        """
        Decode an ImpairmentSpec from HTTP query parameters.

        Args:
            params: Query parameters (iface, direction, rate, delay, ...).
            control_plane_port: Port of the API itself, exempted from shaping.
            base: Spec whose values fill any parameter missing from params,
                e.g. a named profile.

        Returns:
            ImpairmentSpec with blank parameters left unset.

        Raises:
            InvalidSpecError: If a parameter is malformed.
        """
        spec = replace(base) if base is not None else cls()

        iface = (params.get("iface") or "").strip()
        if iface:
            spec.interface = iface
        direction = Direction.parse(params.get("direction"))
        if direction is not None:
            spec.direction = direction

        for key, (field_name, parser) in QUERY_FIELDS.items():
            value = parser(key, params.get(key))
            if value is not None:
                setattr(spec, field_name, value)

        if control_plane_port is not None:
            spec.control_plane_port = control_plane_port
        return spec

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImpairmentSpec":
        """
        Create an ImpairmentSpec from a dictionary of snake_case fields.

        Unknown keys are ignored so profile files may carry extra metadata
        such as a description.

        Example:
            >>> spec = ImpairmentSpec.from_dict({"delay_ms": 100, "loss_pct": 1})
            >>> spec.delay_ms
            100
        """
        return cls(
            interface=data.get("interface", ""),
            direction=Direction.parse(data.get("direction")),
            rate_limit_kbit=_parse_int("rate_limit_kbit", data.get("rate_limit_kbit")),
            delay_ms=_parse_int("delay_ms", data.get("delay_ms")),
            jitter_ms=_parse_int("jitter_ms", data.get("jitter_ms")),
            delay_correlation_pct=_parse_float(
                "delay_correlation_pct", data.get("delay_correlation_pct")
            ),
            distribution=Distribution.parse(data.get("distribution")),
            loss_pct=_parse_float("loss_pct", data.get("loss_pct")),
            loss_correlation_pct=_parse_float(
                "loss_correlation_pct", data.get("loss_correlation_pct")
            ),
            corrupt_pct=_parse_float("corrupt_pct", data.get("corrupt_pct")),
            duplicate_pct=_parse_float("duplicate_pct", data.get("duplicate_pct")),
            reorder_pct=_parse_float("reorder_pct", data.get("reorder_pct")),
            reorder_correlation_pct=_parse_float(
                "reorder_correlation_pct", data.get("reorder_correlation_pct")
            ),
            reorder_gap_packets=_parse_int(
                "reorder_gap_packets", data.get("reorder_gap_packets")
            ),
            packet_limit=_parse_int("packet_limit", data.get("packet_limit")),
            control_plane_port=_parse_int(
                "control_plane_port", data.get("control_plane_port")
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the set fields as plain JSON-friendly values."""
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == "":
                continue
            result[f.name] = value.value if isinstance(value, Enum) else value
        return result

    def validate(self) -> None:
        """
        Check required fields and value ranges.

        Raises:
            InvalidSpecError: On the first violation found.
        """
        if not self.interface:
            raise InvalidSpecError("'iface' is required")
        if self.direction is None:
            raise InvalidSpecError("'direction' is required")
        if self.control_plane_port is None:
            raise InvalidSpecError("control-plane port is not configured")
        if not 0 < self.control_plane_port <= 65535:
            raise InvalidSpecError(
                f"control-plane port {self.control_plane_port} is out of range"
            )

        if self.rate_limit_kbit is not None and self.rate_limit_kbit <= 0:
            raise InvalidSpecError(
                f"'rate' must be a positive number of kbit/s, got {self.rate_limit_kbit}"
            )
        for name in ("delay_ms", "jitter_ms", "reorder_gap_packets", "packet_limit"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidSpecError(f"'{name}' must not be negative, got {value}")
        for name in PERCENT_FIELDS:
            value = getattr(self, name)
            if value is not None and not 0 <= value <= 100:
                raise InvalidSpecError(
                    f"'{name}' must be a percentage between 0 and 100, got {value:g}"
                )

    def normalized(self) -> "ImpairmentSpec":
        """
        Return a copy with meaningless fields removed.

        Zero-valued parents become unset, dependent fields of an unset parent
        are dropped, and a distribution without jitter forces jitter to
        MIN_JITTER_MS.
        """
        spec = replace(self)

        for name in NETEM_FIELDS + ("jitter_ms",):
            if getattr(spec, name) == 0:
                setattr(spec, name, None)
        if spec.distribution is Distribution.NONE:
            spec.distribution = None

        for parent, dependents in DEPENDENT_FIELDS.items():
            if getattr(spec, parent) is None:
                for name in dependents:
                    setattr(spec, name, None)

        if spec.distribution is not None and spec.jitter_ms is None:
            spec.jitter_ms = MIN_JITTER_MS
        if spec.jitter_ms is None:
            spec.delay_correlation_pct = None
        return spec

    def has_netem(self) -> bool:
        """True if any netem impairment is set."""
        spec = self.normalized()
        return any(getattr(spec, name) is not None for name in NETEM_FIELDS)

    def is_noop(self) -> bool:
        """True if neither a rate limit nor any netem impairment is set."""
        return self.rate_limit_kbit is None and not self.has_netem()
