"""
Errors raised while compiling, applying or clearing shaping rules.
"""

from typing import Optional


class NetShapeError(Exception):
    """Base exception for all netshape errors."""

    pass


class SudoNotAvailableError(NetShapeError):
    """
    Raised before any tc/ip/ethtool call when the process is not root and
    ``sudo -n`` asks for a password.
    """

    def __init__(self, message: str = "netshape needs root or passwordless sudo for tc, ip and ethtool"):
        super().__init__(message)


class ProfileNotFoundError(NetShapeError):
    """
    Raised when ``--profile`` names an entry missing from the profiles file,
    or when no profiles file was given at all.
    """

    def __init__(self, profile_name: str, path: Optional[str] = None):
        self.profile_name = profile_name
        self.path = path
        if path is None:
            message = f"Profile '{profile_name}' requested without a profiles file (--profiles or NETSHAPE_PROFILES)"
        else:
            message = f"No profile '{profile_name}' under 'profiles' in {path}"
        super().__init__(message)


class CommandFailedError(NetShapeError):
    """
    Raised when a tc, ip or ethtool invocation exits non-zero or times out.

    Rules applied before the failing command stay in place. Run a clear
    before retrying.
    """

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        message = f"`{command}` returned {returncode}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


class ProfileLoadError(NetShapeError):
    """
    Raised when a profiles file is unreadable or malformed.

    The file must be a YAML mapping with a non-empty ``profiles`` section.
    Each profile may set rate, netem, reorder, from, to, interface,
    ifb_device, exclude_ports and buffer_size. Top-level default_interface,
    ifb_device, exclude_ports and buffer_size apply to every profile.
    """

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        message = f"Cannot use profiles file {path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class OffloadEnabledError(NetShapeError):
    """
    Raised when segmentation offload is enabled on an interface that is
    about to get a bandwidth limit.

    The token bucket sees offloaded super-packets instead of wire-sized
    frames and under-performs silently. Disable it first, e.g.
    ``ethtool -K eth0 tso off gso off gro off``.
    """

    def __init__(self, interface: str, features: list[str]):
        self.interface = interface
        self.features = features
        super().__init__(
            f"Offload enabled on {interface} ({', '.join(features)}); "
            f"bandwidth limiting would be inaccurate"
        )
