"""Local file, remote manifest entry, and the reconciliation plan derived from them."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr


class RemoteEntry(BaseModel):
    """One file of the pinned upstream directory, as listed by the contents API."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: StrictStr
    sha: StrictStr  # git blob SHA-1 (hex)
    size: StrictInt
    download_url: StrictStr


@dataclass(frozen=True)
class LocalFile:
    """A file in the working directory that matched the pattern, with its git blob hash."""

    name: str
    path: Path
    content_hash: str


@dataclass
class ReconciliationPlan:
    """
    Partition of local and remote names. current: hashes match, nothing to do.
    needs_fetch: remote entry with a different or missing local copy. orphaned: local only.
    """

    current: List[str] = field(default_factory=list)
    needs_fetch: List[RemoteEntry] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.needs_fetch and not self.orphaned


@dataclass
class SyncResult:
    """Outcome of a successful pass (or of a dry run, where nothing is downloaded or deleted)."""

    plan: ReconciliationPlan
    downloaded: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def current(self) -> List[str]:
        return self.plan.current


Manifest = Dict[str, RemoteEntry]
