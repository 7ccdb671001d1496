"""
Shaping configuration for netshape.

Defines the immutable configuration values threaded through the compiler,
plus named shaping profiles loaded from YAML.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

import yaml

from .exceptions import ProfileLoadError
from .selector import Selector, parse_selector

logger = logging.getLogger(__name__)

DEFAULT_INTERFACE = "eth0"
DEFAULT_IFB_DEVICE = "ifb0"
DEFAULT_EXCLUDE_PORTS: tuple[int, ...] = (22,)

# Packets queued inside netem. Applied to the impairment stage even when a
# tbf limit is configured upstream.
DEFAULT_BUFFER_SIZE = 1000

# netem reorders packets whenever jitter is set unless a rate is also given.
# This rate is far above any real link and only suppresses the reordering.
REORDER_SUPPRESSION_RATE = "100gbit"


def _raw_params(value) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0", ""}


def parse_flag(value) -> bool:
    """
    Parse a boolean setting from a profile or dict.

    Accepts real bools, 0/1 and the usual yes/no spellings, so a quoted
    ``"false"`` in YAML stays False.

    Raises:
        ValueError: On any other value.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"Invalid boolean: {value!r}")


def parse_ports(value) -> tuple[int, ...]:
    """
    Parse an exclusion port list.

    Accepts a comma/space separated string or an iterable of ints/strings.
    Order and duplicates are kept as entered.
    """
    if value is None:
        return ()
    if isinstance(value, int):
        return (value,)
    if isinstance(value, str):
        items: Iterable = value.replace(",", " ").split()
    else:
        items = value

    ports = []
    for item in items:
        try:
            port = int(item)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid port: {item!r}")
        if not 0 <= port <= 65535:
            raise ValueError(f"Port out of range: {port}")
        ports.append(port)
    return tuple(ports)


@dataclass(frozen=True)
class ShapingSpec:
    """
    What to do to matched traffic.

    Attributes:
        bandwidth_limit: Raw tbf parameters, e.g. "rate 1mbit burst 32kbit
            latency 400ms". Passed through verbatim.
        impairment: Raw netem parameters, e.g. "delay 100ms 10ms loss 1%".
            Passed through verbatim.
        reorder_on_jitter: If False, a large rate is injected into netem to
            stop it reordering packets when jitter is configured.
    """

    bandwidth_limit: Optional[str] = None
    impairment: Optional[str] = None
    reorder_on_jitter: bool = False

    def __post_init__(self):
        object.__setattr__(self, "bandwidth_limit", _raw_params(self.bandwidth_limit))
        object.__setattr__(self, "impairment", _raw_params(self.impairment))

    @property
    def active(self) -> bool:
        return self.bandwidth_limit is not None or self.impairment is not None


@dataclass(frozen=True)
class ShapingConfig:
    """
    Everything one compile needs.

    Attributes:
        interface: Primary interface; outbound rules attach here.
        ifb_device: IFB device mirroring the interface's ingress traffic.
        src: Raw source selector ("none" matches nothing).
        dst: Raw destination selector ("none" matches nothing).
        shaping: Shaping stages to apply to matched traffic.
        exclude_ports: Ports that always bypass shaping.
        buffer_size: netem queue limit in packets.
    """

    interface: str = DEFAULT_INTERFACE
    ifb_device: str = DEFAULT_IFB_DEVICE
    src: str = "none"
    dst: str = "none"
    shaping: ShapingSpec = field(default_factory=ShapingSpec)
    exclude_ports: tuple[int, ...] = DEFAULT_EXCLUDE_PORTS
    buffer_size: int = DEFAULT_BUFFER_SIZE

    def __post_init__(self):
        object.__setattr__(self, "exclude_ports", parse_ports(self.exclude_ports))
        if self.buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {self.buffer_size}")

    def source(self) -> Optional[Selector]:
        return parse_selector(self.src)

    def destination(self) -> Optional[Selector]:
        return parse_selector(self.dst)

    def with_overrides(self, **changes) -> "ShapingConfig":
        """Return a copy with the non-None keyword arguments applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_dict(cls, data: dict, **overrides) -> "ShapingConfig":
        """
        Create a ShapingConfig from a dictionary.

        Keys follow the profile file format: rate, netem, reorder, from, to,
        interface, ifb_device, exclude_ports, buffer_size.

        Example:
            >>> cfg = ShapingConfig.from_dict({"netem": "delay 50ms", "to": "*:80"})
            >>> cfg.shaping.impairment
            'delay 50ms'
        """
        merged = {**data, **{k: v for k, v in overrides.items() if v is not None}}
        return cls(
            interface=merged.get("interface", DEFAULT_INTERFACE),
            ifb_device=merged.get("ifb_device", DEFAULT_IFB_DEVICE),
            src=str(merged.get("from", "none")),
            dst=str(merged.get("to", "none")),
            shaping=ShapingSpec(
                bandwidth_limit=merged.get("rate"),
                impairment=merged.get("netem"),
                reorder_on_jitter=parse_flag(merged.get("reorder", False)),
            ),
            exclude_ports=merged.get("exclude_ports", DEFAULT_EXCLUDE_PORTS),
            buffer_size=int(merged.get("buffer_size", DEFAULT_BUFFER_SIZE)),
        )


@dataclass
class ShapingProfile:
    """
    Named shaping recipe from a profiles file.

    Attributes:
        name: Unique identifier for the profile.
        description: Human-readable description.
        settings: Raw profile keys (rate, netem, from, to, reorder, ...).
    """

    name: str
    description: str = ""
    settings: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: Optional[dict]) -> "ShapingProfile":
        data = dict(data or {})
        description = data.pop("description", "")
        return cls(name=name, description=description, settings=data)

    def to_config(self, defaults: Optional[dict] = None, **overrides) -> ShapingConfig:
        """Build a ShapingConfig from file-level defaults plus this profile."""
        return ShapingConfig.from_dict({**(defaults or {}), **self.settings}, **overrides)


@dataclass
class ProfileSet:
    """Profiles loaded from one file, with the file-level defaults."""

    profiles: dict[str, ShapingProfile]
    defaults: dict = field(default_factory=dict)

    def names(self) -> list[str]:
        return list(self.profiles.keys())


_FILE_DEFAULT_KEYS = {
    "default_interface": "interface",
    "ifb_device": "ifb_device",
    "exclude_ports": "exclude_ports",
    "buffer_size": "buffer_size",
}


def load_profiles(path: str) -> ProfileSet:
    """
    Load shaping profiles from a YAML file.

    Args:
        path: Path to YAML file with a top-level ``profiles`` mapping.

    Raises:
        ProfileLoadError: If file cannot be read or parsed.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ProfileLoadError(path, "file not found")
    except yaml.YAMLError as e:
        raise ProfileLoadError(path, f"invalid YAML: {e}")

    if not data:
        raise ProfileLoadError(path, "empty file")
    if not isinstance(data, dict):
        raise ProfileLoadError(path, "expected a mapping at top level")

    profiles_data = data.get("profiles") or {}
    if not profiles_data:
        raise ProfileLoadError(path, "no profiles defined")

    defaults = {
        target: data[key] for key, target in _FILE_DEFAULT_KEYS.items() if key in data
    }
    profiles = {
        name: ShapingProfile.from_dict(name, config)
        for name, config in profiles_data.items()
    }

    logger.info(f"Loaded {len(profiles)} shaping profiles from {path}")
    return ProfileSet(profiles=profiles, defaults=defaults)
