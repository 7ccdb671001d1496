"""
netshape - traffic shaping policy compiler for Linux tc.

This package compiles a declarative shaping request (a tbf bandwidth limit,
netem delay/jitter/loss, source/destination selectors and excluded ports)
into an ordered set of tc qdiscs and u32 filters, applied to both outbound
traffic and inbound traffic mirrored onto an IFB device.

Example:
    >>> from netshape import ShapingConfig, ShapingSpec, compile_config
    >>> config = ShapingConfig(
    ...     dst="*:80",
    ...     shaping=ShapingSpec(bandwidth_limit="rate 0.5mbit burst 10kb limit 10k"),
    ... )
    >>> rules = compile_config(config)
    >>> len(rules.outbound.filters)
    3

Applying to a live interface:
    >>> with TrafficShaper(interface="eth0") as shaper:
    ...     shaper.apply(config)
"""

from .compiler import (
    build_classifiers,
    build_direction,
    build_exclusions,
    build_shaping_chain,
    compile_config,
)
from .config import (
    DEFAULT_BUFFER_SIZE,
    REORDER_SUPPRESSION_RATE,
    ShapingConfig,
    ShapingProfile,
    ShapingSpec,
    load_profiles,
)
from .exceptions import (
    CommandFailedError,
    NetShapeError,
    OffloadEnabledError,
    ProfileLoadError,
    ProfileNotFoundError,
    SudoNotAvailableError,
)
from .rules import CompiledRules, Direction, Handle, RuleIds, RuleSet
from .selector import NONE, Selector, parse_selector
from .shaper import TrafficShaper

__version__ = "0.1.0"

__all__ = [
    # Compiler
    "compile_config",
    "build_direction",
    "build_shaping_chain",
    "build_classifiers",
    "build_exclusions",
    # Configuration
    "ShapingConfig",
    "ShapingSpec",
    "ShapingProfile",
    "load_profiles",
    "DEFAULT_BUFFER_SIZE",
    "REORDER_SUPPRESSION_RATE",
    # Selectors and rules
    "Selector",
    "NONE",
    "parse_selector",
    "Direction",
    "Handle",
    "RuleIds",
    "RuleSet",
    "CompiledRules",
    # Executor
    "TrafficShaper",
    # Exceptions
    "NetShapeError",
    "SudoNotAvailableError",
    "ProfileNotFoundError",
    "ProfileLoadError",
    "CommandFailedError",
    "OffloadEnabledError",
    # Version
    "__version__",
]
