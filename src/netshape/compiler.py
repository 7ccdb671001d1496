"""
Shaping policy compiler.

Turns a ShapingConfig into ordered qdisc and filter descriptors for the
outbound and inbound directions. Pure: no I/O, no state between calls.

Per device the resulting tree is::

    prio (root)
     |- band 1  pass-through   <- unmatched traffic, excluded ports
     `- band 3  shaped         <- from/to filters
          `- tbf               (bandwidth limit, optional)
               `- netem        (delay/jitter/loss, optional)
"""

import logging
from typing import Iterable, Optional

from .config import DEFAULT_BUFFER_SIZE, REORDER_SUPPRESSION_RATE, ShapingConfig, ShapingSpec
from .rules import (
    BANDWIDTH_QDISC_KIND,
    IMPAIRMENT_QDISC_KIND,
    ROOT,
    ROOT_QDISC_KIND,
    ROOT_QDISC_PARAMS,
    CompiledRules,
    Direction,
    FilterDescriptor,
    QdiscDescriptor,
    RuleIds,
    RuleSet,
)
from .selector import MATCH_ALL_NETWORK, Selector

logger = logging.getLogger(__name__)


def impairment_params(
    spec: ShapingSpec, buffer_size: int = DEFAULT_BUFFER_SIZE
) -> tuple[str, ...]:
    """
    Build the netem parameter tokens for a spec.

    The reorder-suppression rate goes first, then the raw params, then the
    buffer limit. netem takes the last ``limit`` it sees, so the buffer size
    wins over any limit inside the raw params.
    """
    if spec.impairment is None:
        return ()

    params: list[str] = []
    if not spec.reorder_on_jitter:
        params.extend(["rate", REORDER_SUPPRESSION_RATE])
    params.extend(spec.impairment.split())
    params.extend(["limit", str(buffer_size)])
    return tuple(params)


def build_root(ids: RuleIds, device: str) -> QdiscDescriptor:
    return QdiscDescriptor(
        device=device,
        parent=ROOT,
        handle=ids.root,
        kind=ROOT_QDISC_KIND,
        params=ROOT_QDISC_PARAMS,
    )


def build_shaping_chain(
    spec: ShapingSpec,
    ids: RuleIds,
    device: str,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> list[QdiscDescriptor]:
    """
    Build the tbf -> netem chain under the shaped flow.

    Args:
        spec: Shaping stages to build.
        ids: Identifiers for the direction being built.
        device: Device the qdiscs attach to.
        buffer_size: netem queue limit in packets.

    Returns:
        Zero, one or two qdisc descriptors, limiter first.
    """
    chain: list[QdiscDescriptor] = []

    if spec.bandwidth_limit is not None:
        chain.append(
            QdiscDescriptor(
                device=device,
                parent=ids.shaped,
                handle=ids.bandwidth,
                kind=BANDWIDTH_QDISC_KIND,
                params=tuple(spec.bandwidth_limit.split()),
            )
        )

    if spec.impairment is not None:
        chain.append(
            QdiscDescriptor(
                device=device,
                parent=ids.impairment_parent(spec.bandwidth_limit is not None),
                handle=ids.impairment,
                kind=IMPAIRMENT_QDISC_KIND,
                params=impairment_params(spec, buffer_size),
            )
        )

    return chain


def build_classifiers(
    src: Optional[Selector],
    dst: Optional[Selector],
    ids: RuleIds,
    device: str,
) -> list[FilterDescriptor]:
    """
    Build filters steering selected traffic into the shaped flow.

    Source and destination produce independent filters: a packet matching
    either one is shaped. A None side contributes nothing.
    """
    filters: list[FilterDescriptor] = []
    for role, selector in (("src", src), ("dst", dst)):
        if selector is None:
            continue
        filters.append(
            FilterDescriptor(
                device=device,
                parent=ids.root,
                priority=ids.classifier_priority,
                criteria=selector.criteria(role),
                flow=ids.shaped,
            )
        )
    return filters


def build_exclusions(
    ports: Iterable[int], ids: RuleIds, device: str
) -> list[FilterDescriptor]:
    """
    Build filters sending excluded ports straight to the pass-through flow.

    Two filters per port, source port then destination port, at a higher
    precedence than the classifier filters.
    """
    filters: list[FilterDescriptor] = []
    for port in ports:
        for port_field in ("sport", "dport"):
            filters.append(
                FilterDescriptor(
                    device=device,
                    parent=ids.root,
                    priority=ids.exclusion_priority,
                    criteria=(
                        "match", "ip", "src", MATCH_ALL_NETWORK,
                        "match", "ip", port_field, str(port), "0xffff",
                    ),
                    flow=ids.passthrough,
                )
            )
    return filters


def build_direction(config: ShapingConfig, direction: Direction) -> RuleSet:
    """Build the rule set for one direction."""
    ids = RuleIds.for_direction(direction)
    device = config.interface if direction is Direction.OUTBOUND else config.ifb_device

    rules = RuleSet(direction=direction, device=device, ids=ids)
    rules.qdiscs.append(build_root(ids, device))
    rules.qdiscs.extend(
        build_shaping_chain(config.shaping, ids, device, config.buffer_size)
    )
    rules.filters.extend(build_exclusions(config.exclude_ports, ids, device))
    rules.filters.extend(
        build_classifiers(config.source(), config.destination(), ids, device)
    )

    logger.debug(
        f"Built {direction.value} rules on {device}: "
        f"{len(rules.qdiscs)} qdiscs, {len(rules.filters)} filters"
    )
    return rules


def compile_config(config: ShapingConfig) -> CompiledRules:
    """
    Compile a configuration into outbound and inbound rule sets.

    Both directions get the same selectors and shaping stages, so a single
    config shapes round-trip traffic.
    """
    if not config.shaping.active:
        logger.info("No bandwidth limit or impairment configured; rules only classify")

    return CompiledRules(
        outbound=build_direction(config, Direction.OUTBOUND),
        inbound=build_direction(config, Direction.INBOUND),
    )
