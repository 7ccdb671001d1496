"""
Traffic shaper using Linux tc.

Provides the TrafficShaper class, which applies compiled rule sets to an
interface (and its IFB mirror for ingress), reports status, and clears them.
"""

import logging
import os
import shlex
import subprocess
from typing import Optional

from .compiler import compile_config
from .config import DEFAULT_IFB_DEVICE, DEFAULT_INTERFACE, ShapingConfig
from .exceptions import CommandFailedError, OffloadEnabledError, SudoNotAvailableError
from .rules import IMPAIRMENT_QDISC_KIND, CompiledRules, RuleSet

logger = logging.getLogger(__name__)

OFFLOAD_FEATURES = (
    "tcp-segmentation-offload",
    "generic-segmentation-offload",
    "generic-receive-offload",
)


class TrafficShaper:
    """
    Applies compiled shaping rules using Linux tc.

    Requires root (or passwordless sudo). Ingress traffic is mirrored onto
    an IFB (Intermediate Functional Block) device and shaped there as if it
    were egress.

    Example:
        >>> config = ShapingConfig.from_dict({"netem": "delay 100ms", "to": "*:443"})
        >>> with TrafficShaper(interface="eth0") as shaper:
        ...     shaper.apply(config)
        ...     # Rules are automatically cleared on exit
    """

    def __init__(
        self,
        interface: str = DEFAULT_INTERFACE,
        ifb_device: str = DEFAULT_IFB_DEVICE,
        bidirectional: bool = True,
        use_sudo: Optional[bool] = None,
        dry_run: bool = False,
        timeout: int = 10,
    ):
        """
        Initialize the traffic shaper.

        Args:
            interface: Network interface to shape.
            ifb_device: IFB device name for ingress shaping.
            bidirectional: If True, shape both egress and ingress traffic.
            use_sudo: Prefix commands with ``sudo -n``. Defaults to True
                unless already running as root.
            dry_run: Log and record commands instead of running them.
            timeout: Per-command timeout in seconds.
        """
        self.interface = interface
        self.ifb_device = ifb_device
        self.bidirectional = bidirectional
        self.use_sudo = (os.geteuid() != 0) if use_sudo is None else use_sudo
        self.dry_run = dry_run
        self.timeout = timeout
        self.history: list[list[str]] = []
        self.current_rules: Optional[CompiledRules] = None
        self._sudo_available: Optional[bool] = None
        self._ifb_initialized = False

    def __enter__(self) -> "TrafficShaper":
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager, clearing all rules."""
        self.clear()

    def check_sudo(self) -> bool:
        """
        Check if sudo is available without password.

        Returns:
            True if passwordless sudo is available.
        """
        if self._sudo_available is not None:
            return self._sudo_available

        try:
            result = subprocess.run(
                ["sudo", "-n", "true"], capture_output=True, timeout=5
            )
            self._sudo_available = result.returncode == 0
        except (OSError, subprocess.SubprocessError):
            self._sudo_available = False

        return self._sudo_available

    def require_privileges(self) -> None:
        """
        Make sure commands can run as root.

        Raises:
            SudoNotAvailableError: If neither root nor passwordless sudo.
        """
        if self.dry_run or not self.use_sudo:
            return
        if not self.check_sudo():
            raise SudoNotAvailableError()

    def _command(self, args: list[str]) -> list[str]:
        return (["sudo", "-n"] if self.use_sudo else []) + args

    def run(self, args: list[str], ignore_errors: bool = False) -> str:
        """
        Execute a command.

        Args:
            args: Command argv, e.g. ``["tc", "qdisc", "show"]``.
            ignore_errors: Return quietly on a non-zero exit.

        Returns:
            The command's stdout ("" in dry-run mode).

        Raises:
            CommandFailedError: On failure unless ignore_errors is set.
        """
        cmd = self._command(args)
        cmd_str = shlex.join(cmd)
        self.history.append(cmd)

        if self.dry_run:
            logger.debug(f"[dry-run] {cmd_str}")
            return ""

        logger.debug(f"Running: {cmd_str}")
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            if ignore_errors:
                return ""
            logger.error(f"Command timed out: {cmd_str}")
            raise CommandFailedError(cmd_str, -1, "timed out")
        except OSError as e:
            if ignore_errors:
                return ""
            logger.error(f"Command error: {e}")
            raise CommandFailedError(cmd_str, -1, str(e))

        if result.returncode != 0:
            if ignore_errors:
                logger.debug(f"Ignoring failure: {result.stderr.strip()}")
                return result.stdout
            logger.error(f"Command failed: {result.stderr.strip()}")
            raise CommandFailedError(cmd_str, result.returncode, result.stderr.strip())

        return result.stdout

    def tc(self, *args: str, ignore_errors: bool = False) -> str:
        return self.run(["tc", *args], ignore_errors=ignore_errors)

    def offload_features(self) -> list[str]:
        """
        Return the segmentation offload features enabled on the interface.

        Uses ``ethtool -k``. An unreadable result counts as nothing enabled.
        """
        try:
            output = self.run(["ethtool", "-k", self.interface])
        except CommandFailedError as e:
            logger.warning(f"Could not read offload features of {self.interface}: {e}")
            return []

        enabled = []
        for line in output.splitlines():
            name, _, value = line.partition(":")
            if name.strip() in OFFLOAD_FEATURES and value.split()[:1] == ["on"]:
                enabled.append(name.strip())
        return enabled

    def offload_enabled(self) -> bool:
        return bool(self.offload_features())

    def check_environment(self, config: ShapingConfig) -> None:
        """
        Refuse to shape when a bandwidth limit would be inaccurate.

        Raises:
            OffloadEnabledError: If a bandwidth limit is configured while
                segmentation offload is on.
        """
        if config.shaping.bandwidth_limit is None:
            return
        features = self.offload_features()
        if features:
            raise OffloadEnabledError(self.interface, features)

    def _setup_ifb(self) -> None:
        """
        Set up IFB device for ingress shaping.

        Creates the IFB device and redirects all ingress traffic from
        the main interface to it.
        """
        if self._ifb_initialized:
            return

        self.run(["modprobe", "ifb", "numifbs=1"], ignore_errors=True)
        self.run(["ip", "link", "set", "dev", self.ifb_device, "up"])
        self.tc("qdisc", "add", "dev", self.interface, "handle", "ffff:", "ingress")
        self.tc(
            "filter", "add", "dev", self.interface, "parent", "ffff:",
            "protocol", "all", "u32", "match", "u32", "0", "0",
            "action", "mirred", "egress", "redirect", "dev", self.ifb_device,
        )

        self._ifb_initialized = True
        logger.info(f"IFB device {self.ifb_device} initialized for ingress shaping")

    def _teardown_ifb(self) -> None:
        """Tear down IFB device and ingress redirection. Errors are ignored."""
        logger.debug(f"Tearing down ingress mirror {self.interface} -> {self.ifb_device}")
        # Removing the ingress qdisc also removes the redirect filter
        self.tc("qdisc", "del", "dev", self.interface, "ingress", ignore_errors=True)
        self.tc("qdisc", "del", "dev", self.ifb_device, "root", ignore_errors=True)
        self.run(
            ["ip", "link", "set", "dev", self.ifb_device, "down"], ignore_errors=True
        )
        self._ifb_initialized = False

    def apply_rule_set(self, rules: RuleSet) -> None:
        """Run every operation of a rule set in order. Stops at the first failure."""
        for args in rules.commands():
            self.tc(*args)
        logger.info(
            f"Applied {rules.direction.value} rules on {rules.device}: "
            f"{len(rules.qdiscs)} qdiscs, {len(rules.filters)} filters"
        )

    def apply(self, config: ShapingConfig, check_env: bool = True) -> CompiledRules:
        """
        Compile and apply a shaping configuration.

        Existing rules are cleared first. A failing command raises and leaves
        the rules applied so far in place; call clear() before retrying.

        Args:
            config: Configuration to apply. Its interface and IFB device
                override the shaper's.
            check_env: Run the offload check before touching anything.

        Returns:
            The compiled rules that were applied.

        Raises:
            SudoNotAvailableError: Without root or passwordless sudo.
            OffloadEnabledError: If the environment check fails.
            CommandFailedError: If a tc/ip command fails.
        """
        self.require_privileges()
        self.interface = config.interface
        self.ifb_device = config.ifb_device

        compiled = compile_config(config)
        if check_env:
            self.check_environment(config)

        self.clear()

        self.apply_rule_set(compiled.outbound)
        if self.bidirectional:
            self._setup_ifb()
            self.apply_rule_set(compiled.inbound)
        else:
            logger.info("Ingress shaping disabled; inbound rules not applied")

        self.current_rules = compiled

        if (
            not self.dry_run
            and config.shaping.impairment is not None
            and not config.shaping.reorder_on_jitter
        ):
            self.check_reorder_workaround()

        return compiled

    def clear(self) -> bool:
        """
        Clear all tc rules from the interface and its IFB device.

        Returns:
            True. Missing rules ("RTNETLINK answers: No such file or
            directory") are not an error.
        """
        self.tc("qdisc", "del", "dev", self.interface, "root", ignore_errors=True)

        # A previous bidirectional run may have left the mirror behind, so
        # tear it down even in egress-only mode.
        self._teardown_ifb()

        self.current_rules = None
        return True

    def _shaped_devices(self) -> list[str]:
        devices = [self.interface]
        if self.bidirectional:
            devices.append(self.ifb_device)
        return devices

    def check_reorder_workaround(self) -> bool:
        """
        Verify that netem kept the injected rate.

        Some kernels and iproute2 versions drop the rate silently, in which
        case netem still reorders jittered packets. Nothing is undone.

        Returns:
            True if every netem qdisc shows a rate, False otherwise.
        """
        ok = True
        for device in self._shaped_devices():
            output = self.tc("qdisc", "show", "dev", device, ignore_errors=True)
            for line in output.splitlines():
                tokens = line.split()
                if IMPAIRMENT_QDISC_KIND in tokens and "rate" not in tokens:
                    logger.warning(
                        f"netem on {device} ignored the rate parameter; "
                        f"jittered packets may be reordered"
                    )
                    ok = False
        return ok

    def get_status(self) -> dict:
        """
        Get current tc status.

        Returns:
            Dictionary with interface, qdisc/filter output and active flags
            for each shaped device.
        """
        status: dict = {
            "interface": self.interface,
            "bidirectional": self.bidirectional,
        }
        labels = {self.interface: "egress", self.ifb_device: "ingress"}

        for device in self._shaped_devices():
            label = labels[device]
            qdiscs = self.tc("-s", "qdisc", "show", "dev", device, ignore_errors=True)
            filters = self.tc("filter", "show", "dev", device, ignore_errors=True)
            status[f"{label}_device"] = device
            status[f"{label}_qdisc_output"] = qdiscs
            status[f"{label}_filter_output"] = filters
            status[f"{label}_active"] = any(
                kind in qdiscs for kind in ("netem", "tbf", "prio")
            )

        return status
