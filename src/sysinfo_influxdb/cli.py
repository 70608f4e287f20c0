"""Command-line interface for the collector."""

from __future__ import annotations

import argparse
import logging
import os
import socket
import sys
from pathlib import Path

from . import __version__
from .config import (
    DISPLAY_JSON,
    DISPLAY_OFF,
    DISPLAY_TEXT,
    CollectorConfig,
    parse_duration,
)
from .errors import ConfigError, IncompleteLapError
from .families import DEFAULT_COLLECT, parse_families

log = logging.getLogger(__name__)


def _duration(text: str) -> float:
    """argparse type for Go-style durations."""
    try:
        return parse_duration(text)
    except ConfigError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sysinfo-influxdb",
        description="Collect host metrics and send them to InfluxDB",
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"Version: {__version__}",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        type=str.lower,
        choices=[DISPLAY_TEXT, DISPLAY_JSON],
        default="",
        help="Display collected data as text or JSON",
    )
    parser.add_argument(
        "-P",
        "--prefix",
        default=socket.gethostname(),
        help="Series name prefix (default: host name)",
    )
    parser.add_argument(
        "-f",
        "--fqdn",
        action="store_true",
        help="Append the host's FQDN to every series",
    )
    parser.add_argument(
        "-H",
        "--host",
        default="localhost:8086",
        help="InfluxDB host (default: localhost:8086)",
    )
    parser.add_argument("-u", "--username", default="root", help="User for login")
    parser.add_argument(
        "-p", "--password", default="root", help="Password for login"
    )
    parser.add_argument(
        "-s",
        "--secret",
        type=Path,
        default=None,
        help="Path to a password file; overrides --password",
    )
    parser.add_argument(
        "-d",
        "--database",
        default="",
        help="Database to write to (default: none, display only)",
    )
    parser.add_argument(
        "-c",
        "--collect",
        default=DEFAULT_COLLECT,
        help=f"Families to collect (default: {DEFAULT_COLLECT})",
    )
    parser.add_argument(
        "-D",
        "--daemon",
        action="store_true",
        help="Run in daemon mode",
    )
    parser.add_argument(
        "-i",
        "--interval",
        type=_duration,
        default=1.0,
        help="Time between laps, e.g. 1s, 500ms, 1m (default: 1s)",
    )
    parser.add_argument(
        "-C",
        "--consistency",
        type=_duration,
        default=1.0,
        help="Window deltas are scaled to, 0s to disable (default: 1s)",
    )
    parser.add_argument(
        "--timeout",
        type=_duration,
        default=10.0,
        help="Per-sampler timeout (default: 10s)",
    )
    parser.add_argument(
        "--max-laps",
        type=int,
        default=10,
        help="Without daemon mode, laps to try for complete data (default: 10)",
    )
    parser.add_argument(
        "--duration",
        type=_duration,
        default=0.0,
        help="With daemon mode, stop after this long, 0 for unlimited (default: 0)",
    )
    parser.add_argument("--pidfile", type=Path, default=None, help="Write PID here")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def read_secret(path: Path) -> str:
    """Return the first line of a password file.

    Raises:
        ConfigError: If the file cannot be read.
    """
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"Unable to read secret file {path}: {e}") from None
    return text.split("\n", 1)[0]


def write_pidfile(path: Path) -> None:
    """Write the current PID to ``path``.

    Raises:
        ConfigError: If the file cannot be written.
    """
    try:
        path.write_text(str(os.getpid()))
    except OSError as e:
        raise ConfigError(f"Unable to create pidfile {path}: {e}") from None


def resolve_display(verbose: str, database: str) -> str:
    """Pick the display mode: shown by default only when there is no database."""
    if verbose == DISPLAY_JSON:
        return DISPLAY_JSON
    if verbose or not database:
        return DISPLAY_TEXT
    return DISPLAY_OFF


def config_from_args(args: argparse.Namespace) -> CollectorConfig:
    """Build a CollectorConfig from parsed arguments.

    Raises:
        ConfigError: If any option is invalid.
    """
    password = args.password
    if args.secret is not None:
        password = read_secret(args.secret)

    return CollectorConfig(
        interval=args.interval,
        consistency=args.consistency,
        daemon=args.daemon,
        families=parse_families(args.collect),
        prefix=args.prefix,
        fqdn=args.fqdn,
        display=resolve_display(args.verbose, args.database),
        host=args.host,
        username=args.username,
        password=password,
        database=args.database,
        sampler_timeout=args.timeout,
        max_laps=args.max_laps,
        duration=args.duration,
    )


def parse_args(argv: list[str] | None = None) -> CollectorConfig:
    """Parse command-line arguments and return a CollectorConfig."""
    return config_from_args(build_parser().parse_args(argv))


def main(argv: list[str] | None = None) -> None:
    """Entry point for the collector CLI."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = config_from_args(args)
        if args.pidfile is not None:
            write_pidfile(args.pidfile)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    # Import here so --help and --version work without the client library
    from .collector import run_collector
    from .sink import InfluxSink

    sink = InfluxSink.from_config(config) if config.database else None
    try:
        run_collector(config, sink=sink)
    except IncompleteLapError as e:
        log.error("%s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)
    finally:
        if sink is not None:
            sink.close()
