"""
Rule identifiers and descriptor types.

Descriptors are plain data describing the qdiscs and filters to create.
They render to tc argv lists but never run anything themselves.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Union

# Filter priorities within the root prio qdisc. Lower number wins.
EXCLUSION_PRIORITY = 1
CLASSIFIER_PRIORITY = 2

# Root prio qdisc: three bands, every TOS value mapped to band 0 so that
# unclassified traffic defaults to the pass-through flow.
ROOT_QDISC_KIND = "prio"
ROOT_QDISC_PARAMS = ("bands", "3", "priomap") + ("0",) * 16

BANDWIDTH_QDISC_KIND = "tbf"
IMPAIRMENT_QDISC_KIND = "netem"


class Direction(Enum):
    """Traffic direction. Inbound is shaped on the mirrored IFB device."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"


@dataclass(frozen=True)
class Handle:
    """A tc handle or class id, rendered in tc's hex notation."""

    major: int
    minor: int = 0

    def child(self, minor: int) -> "Handle":
        """Return the class id ``major:minor`` under this handle."""
        return Handle(self.major, minor)

    def __str__(self) -> str:
        if self.minor:
            return f"{self.major:x}:{self.minor:x}"
        return f"{self.major:x}:"


# Attach point for root qdiscs
ROOT = "root"

ParentRef = Union[Handle, str]


@dataclass(frozen=True)
class RuleIds:
    """
    Deterministic identifiers for one direction.

    Outbound and inbound get disjoint numbers, so a clear can find exactly
    what was created and the two trees are never confused in status output.
    """

    direction: Direction
    root: Handle
    bandwidth: Handle
    impairment: Handle
    exclusion_priority: int = EXCLUSION_PRIORITY
    classifier_priority: int = CLASSIFIER_PRIORITY

    @classmethod
    def for_direction(cls, direction: Direction) -> "RuleIds":
        base = 1 if direction is Direction.OUTBOUND else 2
        return cls(
            direction=direction,
            root=Handle(base),
            bandwidth=Handle(base * 0x10),
            impairment=Handle(base * 0x10 + 1),
        )

    @property
    def passthrough(self) -> Handle:
        """Flow for unmatched and excluded traffic (band 1)."""
        return self.root.child(1)

    @property
    def shaped(self) -> Handle:
        """Flow for matched traffic (band 3)."""
        return self.root.child(3)

    @property
    def bandwidth_output(self) -> Handle:
        """Class under the tbf qdisc where its inner qdisc attaches."""
        return self.bandwidth.child(1)

    def impairment_parent(self, has_bandwidth: bool) -> Handle:
        """Chain netem under tbf when both stages exist."""
        return self.bandwidth_output if has_bandwidth else self.shaped


@dataclass(frozen=True)
class QdiscDescriptor:
    device: str
    parent: ParentRef
    handle: Handle
    kind: str
    params: tuple[str, ...] = ()

    def tc_args(self) -> list[str]:
        args = ["qdisc", "add", "dev", self.device]
        if self.parent == ROOT:
            args.append(ROOT)
        else:
            args.extend(["parent", str(self.parent)])
        args.extend(["handle", str(self.handle), self.kind])
        args.extend(self.params)
        return args


@dataclass(frozen=True)
class FilterDescriptor:
    device: str
    parent: Handle
    priority: int
    criteria: tuple[str, ...]
    flow: Handle

    def tc_args(self) -> list[str]:
        return [
            "filter", "add", "dev", self.device,
            "parent", str(self.parent),
            "protocol", "ip",
            "prio", str(self.priority),
            "u32", *self.criteria,
            "flowid", str(self.flow),
        ]


Operation = Union[QdiscDescriptor, FilterDescriptor]


@dataclass
class RuleSet:
    """
    Ordered qdiscs and filters for one direction on one device.

    Qdiscs always come before filters, since filters reference their handles.
    """

    direction: Direction
    device: str
    ids: RuleIds
    qdiscs: list[QdiscDescriptor] = field(default_factory=list)
    filters: list[FilterDescriptor] = field(default_factory=list)

    def operations(self) -> Iterator[Operation]:
        yield from self.qdiscs
        yield from self.filters

    def commands(self) -> list[list[str]]:
        """Render every operation as a tc argv list (without ``tc``)."""
        return [op.tc_args() for op in self.operations()]

    def filters_to(self, flow: Handle) -> list[FilterDescriptor]:
        return [f for f in self.filters if f.flow == flow]

    def qdisc(self, kind: str):
        """Return the first qdisc of the given kind, or None."""
        for qdisc in self.qdiscs:
            if qdisc.kind == kind:
                return qdisc
        return None


@dataclass
class CompiledRules:
    outbound: RuleSet
    inbound: RuleSet

    def __iter__(self) -> Iterator[RuleSet]:
        yield self.outbound
        yield self.inbound
