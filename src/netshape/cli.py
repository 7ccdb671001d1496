#!/usr/bin/env python3
"""
Command-line entry point for netshape.

Applies, shows, or clears traffic shaping on an interface.
"""

import argparse
import logging
import os
import shlex
import sys
from typing import Optional

from dotenv import load_dotenv

from .config import (
    DEFAULT_IFB_DEVICE,
    DEFAULT_INTERFACE,
    ShapingConfig,
    load_profiles,
    parse_ports,
)
from .exceptions import NetShapeError, ProfileNotFoundError
from .shaper import TrafficShaper

logger = logging.getLogger("netshape")

ACTIONS = ("apply", "status", "clear")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netshape",
        description="Shape traffic on an interface with tc (tbf + netem), in both directions",
    )
    parser.add_argument(
        "action",
        nargs="?",
        choices=ACTIONS,
        default="status",
        help="What to do (default: status)"
    )
    parser.add_argument(
        "--interface", "-i",
        default=None,
        help=f"Interface to shape (default: $NETSHAPE_INTERFACE or {DEFAULT_INTERFACE})"
    )
    parser.add_argument(
        "--ifb",
        default=None,
        help=f"IFB device used to shape inbound traffic (default: {DEFAULT_IFB_DEVICE})"
    )
    parser.add_argument(
        "--rate",
        default=None,
        help="Raw tbf parameters, e.g. 'rate 1mbit burst 32kbit latency 400ms'"
    )
    parser.add_argument(
        "--netem",
        default=None,
        help="Raw netem parameters, e.g. 'delay 100ms 10ms 25%% loss 0.1%%'"
    )
    parser.add_argument(
        "--from",
        dest="src",
        default=None,
        help="Source selector host[/mask]:port, '*' wildcards, or 'none'"
    )
    parser.add_argument(
        "--to",
        dest="dst",
        default=None,
        help="Destination selector host[/mask]:port, '*' wildcards, or 'none'"
    )
    parser.add_argument(
        "--allow-reorder",
        action="store_true",
        help="Let netem reorder packets when jitter is set"
    )
    parser.add_argument(
        "--exclude-ports",
        default=None,
        help="Comma-separated ports that are never shaped (default: 22, '' for none)"
    )
    parser.add_argument(
        "--buffer-size",
        type=int,
        default=None,
        help="netem queue limit in packets"
    )
    parser.add_argument(
        "--profiles",
        default=os.environ.get("NETSHAPE_PROFILES"),
        help="Path to shaping profiles YAML"
    )
    parser.add_argument(
        "--profile", "-p",
        default=None,
        help="Named profile from --profiles to apply"
    )
    parser.add_argument(
        "--list-profiles",
        action="store_true",
        help="List profiles and exit"
    )
    parser.add_argument(
        "--egress-only",
        action="store_true",
        help="Only shape outbound traffic"
    )
    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Print the commands instead of running them"
    )
    parser.add_argument(
        "--skip-env-check",
        action="store_true",
        help="Do not check segmentation offload before limiting bandwidth"
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Logging level"
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ShapingConfig:
    """
    Build the configuration from CLI arguments, on top of a profile if given.

    Raises:
        ProfileLoadError: If the profiles file cannot be loaded.
        ProfileNotFoundError: If the named profile does not exist.
        ValueError: On an invalid port list.
    """
    overrides = {
        "interface": args.interface,
        "ifb_device": args.ifb,
        "rate": args.rate,
        "netem": args.netem,
        "from": args.src,
        "to": args.dst,
        "reorder": True if args.allow_reorder else None,
        "exclude_ports": (
            parse_ports(args.exclude_ports) if args.exclude_ports is not None else None
        ),
        "buffer_size": args.buffer_size,
    }

    # Precedence: command line > profile file > environment > built-in
    defaults = {
        "interface": os.environ.get("NETSHAPE_INTERFACE", DEFAULT_INTERFACE),
        "ifb_device": os.environ.get("NETSHAPE_IFB_DEVICE", DEFAULT_IFB_DEVICE),
    }

    if args.profile:
        if not args.profiles:
            raise ProfileNotFoundError(args.profile)
        profile_set = load_profiles(args.profiles)
        profile = profile_set.profiles.get(args.profile)
        if profile is None:
            raise ProfileNotFoundError(args.profile, args.profiles)
        return profile.to_config({**defaults, **profile_set.defaults}, **overrides)

    return ShapingConfig.from_dict(defaults, **overrides)


def print_status(status: dict) -> None:
    print(f"\nInterface: {status['interface']}")
    for label in ("egress", "ingress"):
        device = status.get(f"{label}_device")
        if device is None:
            continue
        state = "active" if status[f"{label}_active"] else "inactive"
        print(f"\n[{label}] {device} ({state})")
        print(status[f"{label}_qdisc_output"].rstrip() or "  (no qdiscs)")
        filters = status[f"{label}_filter_output"].rstrip()
        if filters:
            print(filters)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        if args.list_profiles:
            if not args.profiles:
                parser.error("--list-profiles requires --profiles")
            profile_set = load_profiles(args.profiles)
            print("\nAvailable shaping profiles:")
            for name, profile in profile_set.profiles.items():
                print(f"  - {name}: {profile.description or 'No description'}")
            return 0

        try:
            config = config_from_args(args)
        except ValueError as e:
            parser.error(str(e))

        shaper = TrafficShaper(
            interface=config.interface,
            ifb_device=config.ifb_device,
            bidirectional=not args.egress_only,
            dry_run=args.dry_run,
        )

        if args.action == "apply":
            shaper.apply(config, check_env=not args.skip_env_check)
            if args.dry_run:
                for cmd in shaper.history:
                    print(shlex.join(cmd))
        elif args.action == "clear":
            shaper.clear()
            logger.info(f"Cleared shaping on {config.interface}")
        else:
            print_status(shaper.get_status())

    except NetShapeError as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
