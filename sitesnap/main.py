"""
Command line entry point for SiteSnap
"""

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from sitesnap import __version__
from sitesnap.config import get_settings
from sitesnap.snapshot.catalog import describe_age, list_snapshots
from sitesnap.snapshot.errors import ConfigInvalid
from sitesnap.snapshot.job import SnapshotJob
from sitesnap.snapshot.models import (
    ArchiveFormat,
    BuildPolicy,
    CollisionPolicy,
    SnapshotConfig,
    SnapshotResult,
)
from sitesnap.snapshot.profiles import (
    SnapshotProfile,
    available_profiles,
)
from sitesnap.snapshot.watcher import SnapshotWatcher
from sitesnap.utils import get_logger, setup_logging
from sitesnap.utils.paths import format_size

if TYPE_CHECKING:
    from sitesnap.config.settings import Settings

console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def _add_snapshot_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--profile", help="named profile (see 'sitesnap profiles')")
    parser.add_argument("--source", type=Path, help="directory to capture")
    parser.add_argument("--dest", type=Path, help="backup root folder")
    parser.add_argument("--prefix", help="snapshot folder prefix")
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="GLOB",
        help="extra exclusion pattern (repeatable)",
    )
    parser.add_argument(
        "--no-default-excludes",
        action="store_true",
        help="use only the --exclude patterns",
    )
    parser.add_argument("--build", metavar="CMD", help="build command run in the source")
    parser.add_argument(
        "--build-required",
        action="store_true",
        help="fail the snapshot when the build fails",
    )
    parser.add_argument("--timeout", type=float, help="build timeout in seconds")
    parser.add_argument(
        "--format",
        choices=[f.value for f in ArchiveFormat],
        help="archive format",
    )
    parser.add_argument(
        "--collect", metavar="DIR", help="sub-folder captured after the build"
    )
    parser.add_argument(
        "--archive-root", metavar="NAME", help="top folder inside the archive"
    )
    parser.add_argument(
        "--on-collision",
        choices=[p.value for p in CollisionPolicy],
        help="what to do when the snapshot folder already exists",
    )
    parser.add_argument(
        "--keep", type=int, metavar="N", help="keep only the N newest snapshots"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sitesnap",
        description="Timestamped snapshots of a project or site folder",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="take one snapshot")
    _add_snapshot_options(run)

    watch = sub.add_parser("watch", help="snapshot periodically when files change")
    _add_snapshot_options(watch)
    watch.add_argument("--interval", type=float, help="minutes between checks")
    watch.add_argument(
        "--initial", action="store_true", help="take a snapshot on the first check"
    )

    listing = sub.add_parser("list", help="list existing snapshots")
    listing.add_argument("--dest", type=Path, help="backup root folder")
    listing.add_argument("--prefix", help="only this prefix")
    listing.add_argument("--profile", help="use the profile's root and prefix")

    sub.add_parser("profiles", help="show available profiles")
    return parser


def _select_profile(args: argparse.Namespace, settings: "Settings") -> SnapshotProfile:
    if args.profile:
        profiles = available_profiles(settings)
        if args.profile not in profiles:
            known = ", ".join(sorted(profiles))
            raise ConfigInvalid(f"Unknown profile '{args.profile}' (available: {known})")
        return profiles[args.profile]
    return SnapshotProfile(name="command-line", source_dir=Path("."))


def config_from_args(args: argparse.Namespace, settings: "Settings") -> SnapshotConfig:
    """Merge profile, settings and command line options into one config."""
    profile = _select_profile(args, settings)

    excludes = list(args.exclude)
    if not args.no_default_excludes:
        excludes = [*profile.exclude_patterns, *profile.extra_excludes, *excludes]

    return profile.to_config(
        settings,
        source_dir=args.source.resolve() if args.source else None,
        backup_root=args.dest.resolve() if args.dest else None,
        prefix=args.prefix,
        exclude_patterns=excludes,
        build_command=args.build,
        build_policy=BuildPolicy.REQUIRED if args.build_required else None,
        build_timeout=args.timeout,
        archive_format=ArchiveFormat(args.format) if args.format else None,
        collect_subdir=args.collect,
        archive_root=args.archive_root,
        collision_policy=CollisionPolicy(args.on_collision) if args.on_collision else None,
        max_snapshots=args.keep,
    )


def print_result(result: SnapshotResult) -> None:
    table = Table(title=f"Snapshot {result.job_id or '-'}", show_header=False)
    table.add_column("field", style="bold")
    table.add_column("value")
    status_style = "green" if result.success else "red"
    table.add_row("Status", f"[{status_style}]{result.status.value}[/]")
    table.add_row("Source", str(result.source_dir))
    table.add_row("Destination", str(result.destination_dir or "-"))
    table.add_row("Archive", str(result.archive_path or "-"))
    table.add_row("Report", str(result.report_path or "-"))
    table.add_row("Files", str(result.file_count))
    table.add_row("Size", format_size(result.total_bytes))
    if result.excluded_count:
        table.add_row("Excluded", str(result.excluded_count))
    if result.changes:
        table.add_row("Changes", str(len(result.changes)))
    if result.build_result is not None:
        table.add_row("Build", "ok" if result.build_result.success else "failed")
    table.add_row("Warnings", str(len(result.warnings)))
    if result.error:
        table.add_row("Error", f"[red]{escape(result.error)}[/]")
    table.add_row("Duration", f"{result.duration:.1f}s")
    console.print(table)


def print_snapshots(backup_root: Path, prefix: str | None) -> None:
    snapshots = list_snapshots(backup_root, prefix)
    if not snapshots:
        console.print(f"No snapshots in {backup_root}")
        return
    table = Table(title=str(backup_root))
    table.add_column("Name")
    table.add_column("Created")
    table.add_column("Size", justify="right")
    table.add_column("Report")
    for snapshot in snapshots:
        table.add_row(
            snapshot["name"],
            describe_age(snapshot["created"]),
            format_size(snapshot["size"]),
            "yes" if snapshot["has_report"] else "no",
        )
    console.print(table)


def print_profiles(settings: "Settings") -> None:
    table = Table(title="Profiles")
    for column in ("Name", "Source", "Backup root", "Prefix", "Build", "Description"):
        table.add_column(column)
    for name, profile in sorted(available_profiles(settings).items()):
        config = profile.to_config(settings)
        build = "-"
        if config.build_command:
            build = f"{config.build_command} ({config.build_policy.value})"
        table.add_row(
            name,
            str(config.collect_dir),
            str(config.backup_root),
            config.prefix,
            build,
            profile.description,
        )
    console.print(table)


async def run_command(args: argparse.Namespace, settings: "Settings") -> int:
    logger = get_logger("main")

    if args.command == "profiles":
        print_profiles(settings)
        return EXIT_OK

    if args.command == "list":
        if args.profile:
            config = _select_profile(args, settings).to_config(settings)
            print_snapshots(args.dest or config.backup_root, args.prefix or config.prefix)
        else:
            print_snapshots(args.dest or settings.backup_root, args.prefix)
        return EXIT_OK

    config = config_from_args(args, settings)

    if args.command == "watch":
        interval = (args.interval or settings.watch_interval_minutes) * 60
        watcher = SnapshotWatcher(config, interval, snapshot_on_start=args.initial)
        logger.info(
            "Watching for changes",
            source=str(config.collect_dir),
            interval_minutes=interval / 60,
        )
        try:
            for result in await watcher.run():
                print_result(result)
        finally:
            watcher.stop()
        return EXIT_OK

    job = SnapshotJob(config, settings=settings)
    result = await job.run()
    print_result(result)
    return EXIT_OK if result.success else EXIT_FAILED


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, configure logging and run the command."""
    args = build_parser().parse_args(argv)

    settings = get_settings()
    if args.verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    setup_logging(settings)
    logger = get_logger("main")
    logger.debug("Starting SiteSnap", version=__version__, command=args.command)

    try:
        return asyncio.run(run_command(args, settings))
    except ConfigInvalid as e:
        logger.error("Invalid configuration", error=str(e))
        console.print(f"[red]Configuration error:[/] {escape(str(e))}")
        return EXIT_USAGE
    except KeyboardInterrupt:
        console.print("\nSnapshot interrupted by user")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
