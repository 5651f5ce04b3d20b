"""Command-line entry point for sshfleet."""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from sshfleet.config import Config, Settings
from sshfleet.errors import FleetError
from sshfleet.models import ExecutionResult
from sshfleet.services import ParallelExecutor, download, run_command, upload
from sshfleet.utils import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="sshfleet",
        description="Run commands and copy files across a fleet over pooled SSH.",
    )
    parser.add_argument("--user", help="remote login user (default: SSHFLEET_USER)")
    parser.add_argument("--cluster", help="cluster name used in host names")
    sub = parser.add_subparsers(dest="action", required=True)

    for action, help_text in (
        ("exec", "run a command on every host, fail if any host fails"),
        ("status", "run a command on every host and print each outcome"),
    ):
        p = sub.add_parser(action, help=help_text)
        p.add_argument("start", type=int, help="first host index")
        p.add_argument("end", type=int, help="last host index (inclusive)")
        p.add_argument("command", help="shell command to run")

    for action, help_text in (
        ("put", "upload a local file"),
        ("get", "download a remote file"),
    ):
        p = sub.add_parser(action, help=help_text)
        p.add_argument("host", help="remote host name")
        p.add_argument("src", help="source path")
        p.add_argument("dest", help="destination path")

    return parser


def progress_logger(label: str, step: float = 0.1):
    """Build a progress callback that logs each completed step."""
    state = {"next": step}

    def report(fraction: float) -> None:
        if fraction >= state["next"] or fraction >= 1.0:
            logger.info("%s: %.0f%%", label, fraction * 100)
            while state["next"] <= fraction:
                state["next"] += step

    return report


async def run(args: argparse.Namespace, config: Config) -> int:
    """Dispatch one command-line action."""
    user = args.user or config.user
    hosts = config.hosts
    if args.cluster:
        hosts.cluster = args.cluster

    async with config.create_pool() as pool:
        if args.action == "exec":
            executor = ParallelExecutor(
                hosts,
                on_success=lambda r: print(f" {r.index}", end="", flush=True),
            )
            await executor.execute(args.start, args.end, run_command(pool, user, args.command))
            print()
        elif args.action == "status":
            executor = ParallelExecutor(hosts)
            results = await executor.collect(
                args.start, args.end, run_command(pool, user, args.command)
            )
            for result in results:
                print(f"{result.host} {result.index}: {_describe(result)}")
        elif args.action == "put":
            await upload(
                pool, user, args.host, args.src, args.dest,
                progress_logger(f"{args.src} -> {args.host}"),
            )
        elif args.action == "get":
            await download(
                pool, user, args.host, args.src, args.dest,
                progress_logger(f"{args.host}:{args.src}"),
            )
    return 0


def _describe(result: ExecutionResult) -> str:
    if result.error is not None:
        return str(result.error)
    return result.output.strip()


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, configure logging and run the action."""
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        config = Config.from_settings(settings)
    except (FileNotFoundError, ValueError) as e:
        print(f"sshfleet: {e}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(run(args, config))
    except (FleetError, OSError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
