"""CLI entrypoints for docsite commands."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import CONFIG_FILENAME, ConfigError, load_config
from .errors import DocsiteError
from .logging import configure_logging
from .pipeline import Pipeline


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_config_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c",
        "--config",
        default=".",
        help=f"Path to {CONFIG_FILENAME} or the directory holding it (defaults to current directory).",
    )


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsite",
        description="Build, merge, version and publish multi-project documentation sites.",
    )
    _add_verbose_option(parser)
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write detailed logs to this file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser(
        "build",
        help="Build every configured project into one merged site and package it.",
    )
    _add_verbose_option(build_parser, suppress_default=True)
    _add_config_option(build_parser)
    build_parser.add_argument(
        "--no-pack",
        action="store_true",
        help="Skip writing the packaged archive after building.",
    )
    build_parser.add_argument(
        "-j",
        "--jobs",
        type=_positive_int,
        default=None,
        help="Number of projects to build in parallel (defaults to build.jobs).",
    )

    pack_parser = subparsers.add_parser(
        "pack",
        help="Package an already merged site into the configured archive.",
    )
    _add_verbose_option(pack_parser, suppress_default=True)
    _add_config_option(pack_parser)

    publish_parser = subparsers.add_parser(
        "publish",
        help="Force-push the merged site to the hosting branch after confirmation.",
    )
    _add_verbose_option(publish_parser, suppress_default=True)
    _add_config_option(publish_parser)
    publish_parser.add_argument(
        "--from-archive",
        type=Path,
        default=None,
        help="Restore the merged site from a packaged archive before publishing.",
    )

    snapshot_parser = subparsers.add_parser(
        "snapshot",
        help="Build one project as an archived version for later splicing.",
    )
    _add_verbose_option(snapshot_parser, suppress_default=True)
    _add_config_option(snapshot_parser)
    snapshot_parser.add_argument("project", help="Name of the configured project.")
    snapshot_parser.add_argument("version", help="Version label, e.g. v1.")
    snapshot_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Archive path (defaults to <source_dir>/archive/<version>.zip).",
    )

    clean_parser = subparsers.add_parser(
        "clean",
        help="Remove the merged site, staging builds, archive and deploy checkout.",
    )
    _add_verbose_option(clean_parser, suppress_default=True)
    _add_config_option(clean_parser)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for docsite commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), log_file=args.log_file)

    try:
        config = load_config(Path(args.config))
        pipeline = Pipeline(config)
        _dispatch(pipeline, args)
    except (ConfigError, DocsiteError) as exc:
        parser.exit(
            1, f"docsite {args.command} failed: {exc}\nRun with --verbose for more details.\n"
        )


def _dispatch(pipeline: Pipeline, args: argparse.Namespace) -> None:
    if args.command == "build":
        summary = pipeline.run_build(package=not args.no_pack, jobs=args.jobs)
        print(f"Site built at {_relativize(summary.tree.root_dir)}")
        if summary.package is not None:
            print(
                f"Packaged {summary.package.file_count} files into "
                f"{_relativize(summary.package.archive_path)}"
            )
        if summary.skipped_links:
            print(f"{len(summary.skipped_links)} file(s) skipped during link rewriting")
    elif args.command == "pack":
        result = pipeline.run_pack()
        print(f"Packaged {result.file_count} files into {_relativize(result.archive_path)}")
    elif args.command == "publish":
        result = pipeline.run_publish(from_archive=args.from_archive)
        if result.cancelled:
            print("Operation cancelled.")
        else:
            print(f"Published to {pipeline.config.publish.branch}")
    elif args.command == "snapshot":
        result = pipeline.run_snapshot(args.project, args.version, output=args.output)
        print(f"Snapshot written to {_relativize(result.archive_path)}")
    elif args.command == "clean":
        removed = pipeline.run_clean()
        if removed:
            for path in removed:
                print(f"Removed {_relativize(path)}")
        else:
            print("Nothing to clean")
    else:  # pragma: no cover - argparse enforces choices
        raise ConfigError(f"Unknown command {args.command}")


def _relativize(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
