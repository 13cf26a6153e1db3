"""Command-line interface for the asset sync tool.

Subcommands:
    sync              upload changed assets and regenerate bindings
    list              print every manifest entry
    migrate-lockfile  rewrite an older manifest in the current format
    init              write a starter configuration interactively

Exit codes: 0 success, 1 asset failures or drift (dry run), 2 configuration
or manifest error, 130 interrupted.
"""

import argparse
import logging
import re
import sys
from pathlib import Path, PurePosixPath
from typing import Any, Callable

from dotenv import load_dotenv

from . import lockfile
from .backends.base import BackendParams
from .config import FILE_NAME as CONFIG_FILE_NAME
from .config import load_config, write_config
from .core.errors import (
    AssetSyncError,
    AuthenticationError,
    ConfigurationError,
    ManifestError,
    SyncCancelled,
)
from .core.types import SyncAction
from .credentials import load_credentials
from .pipeline import SyncPipeline, SyncReport
from .registry import BackendRegistry

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

LOG_FORMAT = "%(levelname)s: %(message)s"

INPUT_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Send the package's log records to stderr."""
    logger = logging.getLogger("game_asset_sync")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.handlers = [handler]
    logger.propagate = False

    if verbose:
        logger.setLevel(logging.DEBUG)
    elif quiet:
        logger.setLevel(logging.WARNING)
    else:
        logger.setLevel(logging.INFO)


def print_report(report: SyncReport) -> None:
    """Print the run summary and every failure to stderr."""
    counts = report.action_counts
    print(
        f"Synced {len(report.planned)} assets: "
        f"{counts[SyncAction.UPLOAD]} uploaded, "
        f"{counts[SyncAction.REUSE]} reused, "
        f"{counts[SyncAction.UNCHANGED]} unchanged, "
        f"{counts[SyncAction.DECLARED]} declared, "
        f"{len(report.failures)} failed",
        file=sys.stderr,
    )
    if report.duplicates:
        print(f"{len(report.duplicates)} duplicate files share an upload", file=sys.stderr)

    if report.failures:
        print(f"{len(report.failures)} assets failed:", file=sys.stderr)
        for key, cause in sorted(report.failures.items()):
            print(f"  {key}: {cause}", file=sys.stderr)


def run_sync(args: argparse.Namespace) -> int:
    project_dir = Path(args.project).resolve()
    config = load_config(project_dir)
    manifest_path = project_dir / lockfile.FILE_NAME
    manifest = lockfile.load(manifest_path, config.inputs)

    if args.dry_run:
        print("Checking for changes (dry run)...", file=sys.stderr)
        report = SyncPipeline(config, manifest=manifest, dry_run=True).run()

        for key in report.changed:
            print(f"{key} changed")
        for key, cause in sorted(report.failures.items()):
            print(f"Error: {key}: {cause}", file=sys.stderr)

        if report.ok:
            print("Everything is up to date", file=sys.stderr)
            return EXIT_OK
        return EXIT_FAILURE

    credentials = load_credentials(args.api_key, args.cookie)
    params = BackendParams(
        project_dir=project_dir,
        creator=config.creator,
        credentials=credentials,
        expected_price=args.expected_price,
        manifest=manifest,
    )
    backend = BackendRegistry.create_backend(args.target, params)

    print(f"Syncing to {backend.name}...", file=sys.stderr)
    pipeline = SyncPipeline(
        config,
        backend,
        manifest=manifest,
        manifest_path=manifest_path if backend.persistent else None,
        credentials=credentials,
        show_progress=sys.stderr.isatty() and not args.quiet,
    )
    report = pipeline.run()
    print_report(report)

    if report.cancelled:
        return EXIT_INTERRUPTED
    return EXIT_OK if report.ok else EXIT_FAILURE


def run_list(args: argparse.Namespace) -> int:
    project_dir = Path(args.project).resolve()
    inputs = None
    if (project_dir / CONFIG_FILE_NAME).exists():
        inputs = load_config(project_dir).inputs

    manifest = lockfile.load(project_dir / lockfile.FILE_NAME, inputs)
    for key, entry in manifest.items():
        print(f"{key} {entry.identifier}")
    return EXIT_OK


def run_migrate(args: argparse.Namespace) -> int:
    project_dir = Path(args.project).resolve()
    manifest_path = project_dir / lockfile.FILE_NAME

    document = lockfile.read_document(manifest_path)
    if document is None:
        raise ManifestError(f"No manifest found at {manifest_path}")

    version = lockfile.document_version(document)
    if version == lockfile.CURRENT_VERSION:
        print("Your manifest is already up to date", file=sys.stderr)
        return EXIT_OK

    inputs = load_config(project_dir).inputs if version == 0 else None
    manifest = lockfile.Manifest.from_document(lockfile.migrate(document, inputs))
    lockfile.save(manifest, manifest_path)

    print(
        f"Migrated {len(manifest)} entries from version {version} to {lockfile.CURRENT_VERSION}",
        file=sys.stderr,
    )
    return EXIT_OK


def ask(question: str, parse: Callable[[str], Any] = str, default: str | None = None) -> Any:
    """Prompt until parse accepts the answer. An empty answer takes the default."""
    hint = f" [{default}]" if default is not None else ""
    while True:
        answer = input(f"{question}{hint}: ").strip()
        if not answer and default is not None:
            answer = default
        try:
            return parse(answer)
        except ValueError as e:
            print(f"Invalid answer: {e}", file=sys.stderr)


def choice(*options: str) -> Callable[[str], str]:
    def parse(answer: str) -> str:
        if answer.lower() not in options:
            raise ValueError(f"expected one of {', '.join(options)}")
        return answer.lower()

    return parse


def yes_no(answer: str) -> bool:
    if answer.lower() in ("y", "yes"):
        return True
    if answer.lower() in ("n", "no"):
        return False
    raise ValueError("expected y or n")


def positive_int(answer: str) -> int:
    value = int(answer)
    if value < 1:
        raise ValueError("must be a positive number")
    return value


def run_init(args: argparse.Namespace) -> int:
    project_dir = Path(args.project).resolve()
    config_path = project_dir / CONFIG_FILE_NAME
    if config_path.exists() and not args.force:
        raise ConfigurationError(f"{config_path} already exists; pass --force to overwrite it")

    def directory(answer: str) -> str:
        if not answer or not (project_dir / answer).is_dir():
            raise ValueError("path does not exist")
        return PurePosixPath(answer.replace("\\", "/")).as_posix()

    def input_name(answer: str) -> str:
        if not INPUT_NAME.fullmatch(answer):
            raise ValueError("use letters, digits and underscores only")
        return answer

    try:
        asset_dir = ask("Asset source directory", directory)
        output_dir = ask("Output directory for generated code", directory)
        creator_type = ask("Creator type (user/group)", choice("user", "group"), default="user")
        creator_id = ask(f"{creator_type.capitalize()} ID", positive_int)
        name = ask("Output name", input_name, default="assets")
        typescript = ask("Generate TypeScript definitions (y/n)", yes_no, default="n")
        style = ask("Style (flat/nested)", choice("flat", "nested"), default="flat")
        strip_extensions = ask("Strip file extensions (y/n)", yes_no, default="n")
    except EOFError:
        raise SyncCancelled("Setup aborted") from None

    pattern = "**/*" if asset_dir == "." else f"{asset_dir}/**/*"
    document = {
        "creator": {"type": creator_type, "id": creator_id},
        "codegen": {"style": style, "strip_extensions": strip_extensions, "typescript": typescript},
        "inputs": {name: {"path": pattern, "output_path": output_dir}},
    }
    path = write_config(document, project_dir)

    print(f"Wrote {path}. Run 'asset-sync sync' to upload your assets.", file=sys.stderr)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="asset-sync",
        description="Sync game assets to a remote asset service and generate bindings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Upload changed assets
  asset-sync sync --api-key "$KEY"

  # Fail CI when assets changed without a sync
  asset-sync sync --dry-run

  # Try assets in the local editor without uploading
  asset-sync sync --target studio

  # Set up a new project
  asset-sync init
        """,
    )
    parser.add_argument("--project", default=".", help="Project directory (default: current directory)")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Show debug output")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only show warnings and errors")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Sync assets and generate bindings")
    sync.add_argument(
        "--target",
        choices=BackendRegistry.list_backends(),
        default="cloud",
        help="Where assets are synced (default: cloud)",
    )
    sync.add_argument("--api-key", help="API key (default: $ASSET_SYNC_API_KEY)")
    sync.add_argument("--cookie", help="Session cookie for animations and videos (default: $ASSET_SYNC_COOKIE)")
    sync.add_argument(
        "--expected-price",
        type=int,
        help="Acknowledge the price charged for video uploads",
    )
    sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report changed assets; exit with 1 if anything changed",
    )
    sync.set_defaults(handler=run_sync)

    list_ = subparsers.add_parser("list", help="List manifest entries")
    list_.set_defaults(handler=run_list)

    migrate = subparsers.add_parser("migrate-lockfile", help="Migrate the manifest to the current format")
    migrate.set_defaults(handler=run_migrate)

    init = subparsers.add_parser("init", help="Write a starter asset-sync.toml")
    init.add_argument("--force", action="store_true", help="Overwrite an existing configuration")
    init.set_defaults(handler=run_init)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the asset-sync command."""
    BackendRegistry.discover_backends()

    parser = build_parser()
    args = parser.parse_args(argv)
    load_dotenv(Path(args.project).resolve() / ".env")
    configure_logging(verbose=args.verbose, quiet=args.quiet)

    try:
        code = args.handler(args)
    except (ConfigurationError, ManifestError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = EXIT_CONFIG
    except AuthenticationError as e:
        print(f"Error: authentication failed, manifest not modified: {e}", file=sys.stderr)
        code = EXIT_FAILURE
    except (SyncCancelled, KeyboardInterrupt):
        print("Interrupted", file=sys.stderr)
        code = EXIT_INTERRUPTED
    except AssetSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        code = EXIT_FAILURE

    sys.exit(code)


if __name__ == "__main__":
    main()
