"""CLI entry point for hyperpublisher."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .errors import PublisherError
from .log.identity import random_seed
from .session import create, get_url, sync


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    logging.basicConfig(level=level, handlers=[handler])


def _load(args: argparse.Namespace) -> Config:
    config = load_config(args.config)
    if getattr(args, "mirror", False):
        config.mirror.enabled = True
    return config


async def cmd_create(args: argparse.Namespace) -> int:
    """Create a drive and wait until a peer holds it."""
    config = _load(args)
    seed = args.seed or random_seed().hex()

    try:
        url = await get_url(seed, config)
        print(f"Seed: {seed}")
        print(f"URL: {url}")
        result = await create(seed, title=args.title, config=config)
    except PublisherError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if result.pin is not None:
        print(f"Pinning: {result.pin.status.value}")
    print("Synced")
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Publish a local directory into a drive."""
    config = _load(args)

    try:
        result = await sync(
            args.seed,
            args.fs_path,
            args.drive_path,
            tag=args.tag,
            ignore=args.ignore,
            delete=True if args.delete else None,
            config=config,
        )
    except PublisherError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"URL: {result.url}")
    if args.json:
        print(json.dumps([entry.to_dict() for entry in result.diff], indent=2))
    elif result.diff:
        for entry in result.diff:
            print(f"  {entry.change:<4} {entry.path}")
    else:
        print("  no changes")
    if result.tag:
        print(f"Tagged: {result.tag}")
    return 0


async def cmd_get_url(args: argparse.Namespace) -> int:
    """Print the public URL of the drive for a seed."""
    try:
        print(await get_url(args.seed, load_config(args.config)))
    except PublisherError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hyperpublisher",
        description="Publish a local directory as a replicated hyperdrive",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    create_parser = subparsers.add_parser("create", help="Create a new drive")
    create_parser.add_argument(
        "seed",
        nargs="?",
        default=None,
        help="Hex seed to derive the drive from (default: a new random seed)",
    )
    create_parser.add_argument("--title", default=None, help="Title written to index.json")
    create_parser.add_argument(
        "--mirror",
        action="store_true",
        help="Run a persistent mirror peer in process",
    )
    create_parser.set_defaults(func=cmd_create)

    sync_parser = subparsers.add_parser("sync", help="Sync a directory into a drive")
    sync_parser.add_argument("seed", help="Hex seed of the drive")
    sync_parser.add_argument(
        "fs_path",
        nargs="?",
        default=".",
        help="Local directory to publish (default: current directory)",
    )
    sync_parser.add_argument(
        "drive_path",
        nargs="?",
        default="/",
        help="Folder inside the drive (default: /)",
    )
    sync_parser.add_argument("--tag", default=None, help="Tag the resulting version")
    sync_parser.add_argument(
        "--ignore",
        nargs="*",
        default=None,
        metavar="GLOB",
        help="Glob patterns to leave out of the diff",
    )
    sync_parser.add_argument(
        "--delete",
        action="store_true",
        help="Remove drive files that no longer exist locally",
    )
    sync_parser.add_argument(
        "--mirror",
        action="store_true",
        help="Run a persistent mirror peer in process",
    )
    sync_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the diff as JSON",
    )
    sync_parser.set_defaults(func=cmd_sync)

    url_parser = subparsers.add_parser(
        "get-url",
        aliases=["getURL"],
        help="Print the URL of the drive for a seed",
    )
    url_parser.add_argument("seed", help="Hex seed of the drive")
    url_parser.set_defaults(func=cmd_get_url)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
