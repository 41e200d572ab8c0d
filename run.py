#!/usr/bin/env python3
"""
WebShell quick launcher

Usage:
  python run.py                          # sandbox shell, deadline interrupts
  python run.py --mode cycle_count       # count interrupt checkpoints instead
  python run.py --deadline-ms 1000       # 1 s per command
  python run.py --echo                   # echo shell (no script engine)
  python run.py --config webshell.yaml   # start from a YAML config
  python run.py --help                   # show help
"""

import argparse
import logging
import sys

from console.config import default_config, load_config
from console.session import run_interactive
from webshell_core.errors import ActorFailure
from webshell_core.schemas import SessionConfig


def build_config(args) -> SessionConfig:
    """Apply command-line overrides on top of the base configuration."""
    base = load_config(args.config) if args.config else default_config()
    data = base.to_dict()

    shell = data["terminal"]["shell"]
    limits = shell["limits"]
    if args.mode:
        limits["interrupt_mode"] = args.mode
    if args.deadline_ms is not None:
        limits["deadline_ms"] = args.deadline_ms
    if args.cycle_limit is not None:
        limits["cycle_limit"] = args.cycle_limit
    if args.echo:
        shell["kind"] = "echo"
    if args.log_level:
        data["log_level"] = args.log_level

    return SessionConfig.from_dict(data)


def print_banner(config: SessionConfig) -> None:
    limits = config.terminal.shell.limits
    print("=" * 60)
    print("  WebShell")
    print("=" * 60)
    print(f"  shell:      {config.terminal.shell.kind}")
    print(f"  interrupts: {limits.interrupt_mode.value}", end="")
    if limits.interrupt_mode.value == "deadline":
        print(f" ({limits.deadline_ms} ms)")
    else:
        print(f" ({limits.cycle_limit} cycles)")
    print(f"  memory:     {limits.memory_limit_bytes // 1024} KiB")
    print(f"  stack:      {limits.stack_limit_bytes // 1024} KiB")
    print(f"  cpu:        {limits.cpu_limit_seconds} s")
    print("=" * 60)
    print("  end a line with \\ to continue, :top/:bottom to navigate, :exit to quit")
    print()


def main():
    parser = argparse.ArgumentParser(
        description="WebShell quick launcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="YAML session config to start from",
    )
    parser.add_argument(
        "--mode", "-m",
        choices=["deadline", "cycle_count"],
        default=None,
        help="interrupt policy (default: from config, deadline)",
    )
    parser.add_argument(
        "--deadline-ms",
        type=int,
        default=None,
        help="per-command deadline in milliseconds (default: 5000)",
    )
    parser.add_argument(
        "--cycle-limit",
        type=int,
        default=None,
        help="interrupt checkpoints allowed per command (default: 1024)",
    )
    parser.add_argument(
        "--echo",
        action="store_true",
        help="use the echo shell instead of the sandbox",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="logging level (default: WARNING)",
    )

    args = parser.parse_args()

    try:
        config = build_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    print_banner(config)

    try:
        run_interactive(config)
    except ActorFailure as e:
        print(f"Session failed: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
