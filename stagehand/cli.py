#!/usr/bin/env python3
"""Command-line interface for the stagehand sample host.

Usage:
    python -m stagehand serve [--host HOST] [--port PORT] [--environment ENV]
    python -m stagehand describe [--environment ENV]

Settings not given on the command line come from ``STAGEHAND_*``
environment variables, then the built-in defaults.
"""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Mapping, Sequence
from typing import Any

from .core.config import load_settings
from .core.errors import ConfigurationError
from .hosting.builder import HostBuilder
from .samples import SampleStartup


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if getattr(args, "environment", None):
        overrides["environment"] = args.environment
    if getattr(args, "host", None):
        overrides.setdefault("server", {})["host"] = args.host
    if getattr(args, "port", None) is not None:
        overrides.setdefault("server", {})["port"] = args.port
    if getattr(args, "log_level", None):
        overrides.setdefault("logging", {})["level"] = args.log_level.upper()
    return overrides


def build_host(args: argparse.Namespace, environ: Mapping[str, str] | None = None, **kwargs: Any):
    """Build the sample host. Command-line values override the environment."""
    environ = os.environ if environ is None else environ
    settings = load_settings(environ=environ, command_line=_overrides(args))
    return HostBuilder(settings=settings, **kwargs).use_startup(SampleStartup).build()


def cmd_serve(args: argparse.Namespace) -> int:
    host = build_host(args)
    host.run()
    return 0


def cmd_describe(args: argparse.Namespace) -> int:
    host = build_host(args, configure_logging=False)
    settings = host.settings
    print(f"Environment: {settings.environment}")
    print(f"Listen: {settings.host}:{settings.port}")
    print("\nPipeline:")
    for idx, name in enumerate(host.pipeline.describe(), start=1):
        print(f"  {idx}. {name}")
    print("\nServices:")
    for name, lifetime in sorted(host.services.list_services().items()):
        print(f"  {name:<24} {lifetime}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stagehand",
        description="Run or inspect the stagehand sample host",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--environment", choices=["Development", "Staging", "Production"])
        sub.add_argument("--log-level", dest="log_level")

    serve = subparsers.add_parser("serve", help="Serve the sample application")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    add_common(serve)
    serve.set_defaults(func=cmd_serve)

    describe = subparsers.add_parser("describe", help="Print the pipeline and services")
    add_common(describe)
    describe.set_defaults(func=cmd_describe)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
