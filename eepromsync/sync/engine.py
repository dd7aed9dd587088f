"""Sync logic: hash local images, diff against the pinned manifest, download, delete left-overs.

The remote snapshot is the single source of truth; local files are never uploaded.
A pass is all-or-nothing from the caller's point of view:
- Every local file is hashed before anything else happens; one unreadable file aborts.
- The manifest is fetched before the first filesystem change.
- Downloads run concurrently under one deadline; the first failure cancels the rest.
  A file is only put in place once its content matched the manifest hash.
- Left-over files are deleted only after every download succeeded, one at a time.
There is no rollback: a failed pass leaves the directory as it was at the failure point.
"""

import fnmatch
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from eepromsync.api.client import ContentsClient
from eepromsync.config import DEFAULT_PATTERN, Settings
from eepromsync.errors import FileSystemError, SyncError
from eepromsync.hashing import git_blob_hash
from eepromsync.models import LocalFile, Manifest, ReconciliationPlan, RemoteEntry, SyncResult
from eepromsync.sync.tasks import CancelToken, TaskGroup

log = logging.getLogger(__name__)

DEFAULT_DEADLINE_SECONDS = 60.0
DEFAULT_MAX_WORKERS = 8

# Called with (downloaded, deleted) after a pass that changed something
CompleteCallback = Callable[[int, int], None]


def list_local(root: Path, pattern: str = DEFAULT_PATTERN) -> List[Path]:
    """Regular files directly in root whose name matches pattern, sorted by name."""
    try:
        return sorted(p for p in root.glob(pattern) if p.is_file())
    except OSError as e:
        raise FileSystemError(f"Listing {root}: {e}") from e


def hash_local(paths: List[Path], max_workers: int = DEFAULT_MAX_WORKERS) -> Dict[str, LocalFile]:
    """Hash every path in parallel. Returns {name: LocalFile}; any failure aborts the whole batch."""
    hashes: Dict[str, LocalFile] = {}
    lock = threading.Lock()

    def _hash_one(path: Path) -> None:
        local = LocalFile(name=path.name, path=path, content_hash=git_blob_hash(path))
        with lock:
            hashes[local.name] = local

    if not paths:
        return hashes
    with TaskGroup(max_workers=max_workers, name="hash") as group:
        for path in paths:
            group.go(_hash_one, path)
    return hashes


def filter_manifest(manifest: Manifest, pattern: str = DEFAULT_PATTERN) -> Manifest:
    """Keep only entries the local scan would pick up, so a finished pass stays finished."""
    kept = {name: entry for name, entry in manifest.items() if fnmatch.fnmatch(name, pattern)}
    skipped = sorted(set(manifest) - set(kept))
    if skipped:
        log.warning("Ignoring %d remote file(s) not matching %s: %s", len(skipped), pattern, skipped)
    return kept


def build_plan(local: Dict[str, LocalFile], manifest: Manifest) -> ReconciliationPlan:
    """
    Walk the manifest: equal hash -> current, anything else -> needs_fetch. Each
    remote name consumes its local entry either way; what is left locally is orphaned.
    """
    remaining = dict(local)
    plan = ReconciliationPlan()
    for name in sorted(manifest):
        entry = manifest[name]
        local_file = remaining.pop(name, None)
        if local_file is not None and local_file.content_hash == entry.sha:
            plan.current.append(name)
            continue
        # not found, or not up to date
        log.info(
            "getting %s (local %s, remote %s)",
            name, local_file.content_hash if local_file else "missing", entry.sha,
        )
        plan.needs_fetch.append(entry)
    plan.orphaned = sorted(remaining)
    return plan


def fetch_all(
    api: ContentsClient,
    root: Path,
    entries: List[RemoteEntry],
    deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> List[str]:
    """
    Download entries concurrently under one deadline for the whole batch.
    Raises the first failure (DeadlineExceeded if time ran out); siblings are cancelled.
    """
    if not entries:
        return []
    token = CancelToken(deadline_seconds)
    log.info("Downloading %d file(s) (%d workers, deadline %.0fs)", len(entries), max_workers, deadline_seconds)
    with TaskGroup(max_workers=max_workers, token=token, name="fetch") as group:
        for entry in entries:
            group.go(api.download, entry, root / entry.name, token)
    return [entry.name for entry in entries]


def delete_orphans(root: Path, names: List[str]) -> List[str]:
    """Delete left-over files one by one. The first failure aborts."""
    deleted: List[str] = []
    for name in names:
        path = root / name
        log.info("removing left-over file %s", path)
        try:
            path.unlink()
        except OSError as e:
            raise FileSystemError(f"Removing left-over file {path}: {e}") from e
        deleted.append(name)
    return deleted


def reconcile(
    api: ContentsClient,
    local_root: Path,
    pattern: str = DEFAULT_PATTERN,
    deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
    max_workers: int = DEFAULT_MAX_WORKERS,
    dry_run: bool = False,
) -> SyncResult:
    """
    Run one pass: (1) hash local files; (2) fetch the manifest; (3) plan;
    (4) download stale and missing files; (5) delete left-overs. Raises SyncError
    on the first failure. With dry_run nothing is downloaded or deleted.
    """
    local_root = Path(local_root)
    log.info("Sync pass started (local_root=%s, ref=%s)", local_root, api.ref)

    # --- Phase 1: hash local files (read-only) ---
    paths = list_local(local_root, pattern)
    log.info("Local files: %s", [p.name for p in paths])
    local = hash_local(paths, max_workers=max_workers)

    # --- Phase 2: remote manifest ---
    manifest = filter_manifest(api.fetch_manifest(), pattern)
    log.info("Manifest lists %d file(s)", len(manifest))

    # --- Phase 3: plan ---
    plan = build_plan(local, manifest)
    log.info(
        "Plan: %d current, %d to download, %d to delete",
        len(plan.current), len(plan.needs_fetch), len(plan.orphaned),
    )
    if dry_run:
        return SyncResult(plan=plan, dry_run=True)

    # --- Phase 4: downloads, all or nothing ---
    downloaded = fetch_all(
        api, local_root, plan.needs_fetch, deadline_seconds=deadline_seconds, max_workers=max_workers
    )

    # --- Phase 5: left-overs, strictly after downloads ---
    deleted = delete_orphans(local_root, plan.orphaned)

    log.info(
        "Sync pass completed (%d current, %d downloaded, %d deleted)",
        len(plan.current), len(downloaded), len(deleted),
    )
    return SyncResult(plan=plan, downloaded=downloaded, deleted=deleted)


class SyncEngine:
    """
    Wraps reconcile with settings. run() returns None on success or an error message,
    so callers decide how to report failure.
    """

    def __init__(
        self,
        api: ContentsClient,
        local_root: Path,
        settings: Optional[Settings] = None,
        dry_run: bool = False,
        on_complete: Optional[CompleteCallback] = None,
    ) -> None:
        self._api = api
        self._local_root = Path(local_root)
        self._settings = settings or Settings()
        self._dry_run = dry_run
        self._on_complete = on_complete
        self.last_result: Optional[SyncResult] = None

    def run(self) -> Optional[str]:
        """Run one pass. Returns None on success, error message on failure."""
        try:
            result = reconcile(
                self._api,
                self._local_root,
                pattern=self._settings.pattern,
                deadline_seconds=self._settings.fetch_deadline_seconds,
                max_workers=self._settings.max_workers,
                dry_run=self._dry_run,
            )
        except SyncError as e:
            log.error("Sync failed: %s: %s", type(e).__name__, e)
            return f"{type(e).__name__}: {e}"
        self.last_result = result
        if self._on_complete and (result.downloaded or result.deleted):
            self._on_complete(len(result.downloaded), len(result.deleted))
        return None
