"""
Address/port selectors.

Parses ``host[/mask]:port`` match expressions into the criteria used by
u32 classifier filters.
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Sentinel returned for "none": the side matches nothing.
NONE = None

MATCH_ALL_NETWORK = "0.0.0.0/0"


@dataclass(frozen=True)
class Selector:
    """
    Parsed traffic selector.

    Attributes:
        network: Host or prefix token (``10.0.0.0/8``), passed to tc
            verbatim. None matches any address.
        port: Port number. None means no port criterion.
    """

    network: Optional[str] = None
    port: Optional[int] = None

    def match_all(self) -> bool:
        """Return True when neither address nor port is constrained."""
        return self.network is None and self.port is None

    def criteria(self, role: str) -> tuple[str, ...]:
        """
        Build u32 match criteria for this selector.

        Args:
            role: "src" to match the packet source, "dst" for the destination.

        Returns:
            Flat tuple of tc tokens. The address match is always present so
            an unconstrained side still matches every address.
        """
        if role not in ("src", "dst"):
            raise ValueError(f"Invalid selector role: {role}")

        tokens = ["match", "ip", role, self.network or MATCH_ALL_NETWORK]
        if self.port is not None:
            port_field = "sport" if role == "src" else "dport"
            tokens.extend(["match", "ip", port_field, str(self.port), "0xffff"])
        return tuple(tokens)

    def __str__(self) -> str:
        network = self.network or "*"
        port = "*" if self.port is None else str(self.port)
        return f"{network}:{port}"


def _parse_port(text: str, selector: str) -> Optional[int]:
    if not text:
        return None
    if text.isascii() and text.isdigit() and int(text) <= 65535:
        return int(text)
    logger.warning(f"Ignoring unparseable port in selector '{selector}': {text!r}")
    return None


def parse_selector(text: Optional[str]) -> Optional[Selector]:
    """
    Parse a ``host[/mask]:port`` selector.

    Args:
        text: Selector string. ``"none"`` matches nothing, ``"*:*"`` or an
            empty string matches everything. Either half may be a ``*``
            wildcard.

    Returns:
        A Selector, or NONE (None) for the "none" sentinel.

    Example:
        >>> parse_selector("10.0.0.0/8:*")
        Selector(network='10.0.0.0/8', port=None)
        >>> parse_selector("*:80")
        Selector(network=None, port=80)
    """
    raw = (text or "").strip()
    if raw.lower() == "none":
        return NONE

    host, sep, port = raw.rpartition(":")
    if not sep:
        host, port = raw, ""

    host = host.replace("*", "").strip()
    port = port.replace("*", "").strip()

    return Selector(network=host or None, port=_parse_port(port, raw))
