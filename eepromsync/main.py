"""Entry point: parse flags, resolve credentials, run one sync pass in the target directory."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from eepromsync import __version__
from eepromsync.api.client import ContentsClient
from eepromsync.auth.credentials import CredentialsStore, resolve_auth
from eepromsync.config import Settings, get_settings
from eepromsync.models import SyncResult
from eepromsync.sync.engine import SyncEngine

log = logging.getLogger("eepromsync.main")


def _setup_logging(level: str = "INFO", log_file: str = "") -> None:
    """Configure logging to stderr and, when log_file is set, to that file as well."""
    lvl = getattr(logging, level.upper(), logging.INFO)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger("eepromsync")
    root.setLevel(lvl)
    root.handlers.clear()
    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(lvl)
    sh.setFormatter(fmt)
    root.addHandler(sh)
    if log_file and log_file.strip():
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setLevel(lvl)
            fh.setFormatter(fmt)
            root.addHandler(fh)
            root.info("Logging to file %s", log_file)
        except OSError as e:
            root.warning("Could not open log file %s: %s", log_file, e)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eepromsync",
        description=(
            "Make the *.bin files in a directory match the Raspberry Pi EEPROM images "
            "of a pinned rpi-eeprom commit: download changed files, delete left-overs."
        ),
    )
    parser.add_argument(
        "--github_user_pass",
        "--github-user-pass",
        dest="github_user_pass",
        default="",
        help=(
            "If non-empty, a user:password string for HTTP basic authentication "
            "(see https://github.com/settings/tokens). Defaults to "
            "GITHUB_USER:GITHUB_AUTH_TOKEN, then to the keyring."
        ),
    )
    parser.add_argument(
        "--dir",
        dest="local_root",
        type=Path,
        default=Path("."),
        help="Directory holding the firmware images (default: current directory).",
    )
    parser.add_argument("--ref", default=None, help="Override the pinned commit to sync against.")
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Seconds allowed for all downloads together (default: 60).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be downloaded and deleted, change nothing.",
    )
    parser.add_argument(
        "--save-credentials",
        action="store_true",
        help="Store --github_user_pass in the OS keyring and exit.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _load_settings(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.ref:
        overrides["ref"] = args.ref
    if args.deadline is not None:
        overrides["fetch_deadline_seconds"] = args.deadline
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    return get_settings(**overrides)


def _print_plan(result: SyncResult) -> None:
    plan = result.plan
    print(f"Up to date:   {len(plan.current)}")
    print(f"To download:  {len(plan.needs_fetch)}")
    for entry in plan.needs_fetch:
        print(f"  {entry.name} ({entry.size} bytes, {entry.sha})")
    print(f"To delete:    {len(plan.orphaned)}")
    for name in plan.orphaned:
        print(f"  {name}")
    if plan.is_noop:
        print()
        print("Match: local directory already equals the pinned snapshot.")


def main(argv: Optional[List[str]] = None) -> int:
    """Run eepromsync. Returns the process exit code (0 success, 1 failure)."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = _load_settings(args)
    except ValidationError as e:
        parser.error(str(e))
    _setup_logging(settings.log_level, settings.log_file)

    store = CredentialsStore()
    if args.save_credentials:
        if not args.github_user_pass:
            parser.error("--save-credentials requires --github_user_pass")
        try:
            store.set_stored(args.github_user_pass)
        except ValueError as e:
            parser.error(str(e))
        except Exception as e:
            log.error("Could not store credentials: %s", e)
            return 1
        log.info("Credentials stored in keyring")
        return 0

    try:
        auth = resolve_auth(args.github_user_pass or None, settings, store)
    except ValueError as e:
        parser.error(str(e))

    local_root = args.local_root.resolve()
    if not local_root.is_dir():
        log.error("Not a directory: %s", local_root)
        return 1

    api = ContentsClient.from_settings(settings, auth=auth)
    engine = SyncEngine(
        api,
        local_root,
        settings=settings,
        dry_run=args.dry_run,
        on_complete=lambda downloaded, deleted: log.info(
            "Downloaded %d file(s), deleted %d file(s)", downloaded, deleted
        ),
    )
    err = engine.run()
    if err is not None:
        return 1
    if args.dry_run and engine.last_result is not None:
        _print_plan(engine.last_result)
    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
