"""HTTP client for the GitHub contents API: pinned directory listing and raw file download."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional, Tuple

import httpx
from pydantic import ValidationError

from eepromsync import __version__
from eepromsync.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_PATH,
    DEFAULT_REPOSITORY,
    EEPROM_REF,
    Settings,
)
from eepromsync.errors import (
    DeadlineExceeded,
    FileSystemError,
    NetworkError,
    ProtocolError,
)
from eepromsync.hashing import GitBlobHasher
from eepromsync.models import Manifest, RemoteEntry
from eepromsync.sync.tasks import CancelToken

log = logging.getLogger(__name__)

ACCEPT_JSON = "application/vnd.github.v3+json"
ACCEPT_RAW = "application/vnd.github.v3.raw"


def _check_entry_name(name: str) -> None:
    """Manifest names become local paths: only plain file names are accepted."""
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise ProtocolError(f"Manifest entry has unsafe name: {name!r}")


def parse_manifest(data: Any) -> Manifest:
    """
    Turn a decoded contents listing into {name: RemoteEntry}. Non-file entries
    (sub-directories, symlinks) are skipped. Raises ProtocolError on anything else
    that does not fit the schema, so no partial manifest is ever returned.
    """
    if not isinstance(data, list):
        raise ProtocolError(f"Manifest: expected a JSON array, got {type(data).__name__}")
    result: Dict[str, RemoteEntry] = {}
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise ProtocolError(f"Manifest entry {i}: expected an object, got {type(item).__name__}")
        kind = item.get("type", "file")
        if kind != "file":
            log.debug("Manifest: skipping %s entry %r", kind, item.get("name"))
            continue
        try:
            entry = RemoteEntry.model_validate(item)
        except ValidationError as e:
            raise ProtocolError(f"Manifest entry {i}: {e}") from e
        _check_entry_name(entry.name)
        if entry.size < 0:
            raise ProtocolError(f"Manifest entry {entry.name!r}: negative size {entry.size}")
        if entry.name in result:
            raise ProtocolError(f"Manifest lists {entry.name!r} more than once")
        result[entry.name] = entry
    return result


class ContentsClient:
    """
    Client for one directory of a GitHub repository at a pinned ref: list it
    (the manifest) and download its files. Optional HTTP Basic credential for
    higher rate limits; without one requests are unauthenticated.
    """

    def __init__(
        self,
        repository: str = DEFAULT_REPOSITORY,
        path: str = DEFAULT_PATH,
        ref: str = EEPROM_REF,
        base_url: str = DEFAULT_API_BASE_URL,
        auth: Optional[httpx.Auth] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._repository = repository.strip("/")
        self._path = path.strip("/")
        self._ref = ref
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeout = timeout
        self._transport = transport
        log.debug(
            "Contents client for %s/%s at %s (authenticated=%s)",
            self._repository, self._path, self._ref, auth is not None,
        )

    @classmethod
    def from_settings(cls, settings: Settings, auth: Optional[httpx.Auth] = None) -> "ContentsClient":
        return cls(
            repository=settings.repository,
            path=settings.path,
            ref=settings.ref,
            base_url=settings.api_base_url,
            auth=auth,
        )

    @property
    def ref(self) -> str:
        return self._ref

    def manifest_url(self) -> str:
        return f"{self._base_url}/repos/{self._repository}/contents/{self._path}"

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, follow_redirects=True, transport=self._transport)

    def _headers(self, accept: str) -> Dict[str, str]:
        return {"Accept": accept, "User-Agent": f"eepromsync/{__version__}"}

    def fetch_manifest(self) -> Manifest:
        """GET /repos/{repository}/contents/{path}?ref={ref}. Returns {name: RemoteEntry}."""
        url = self.manifest_url()
        log.debug("GET %s?ref=%s", url, self._ref)
        try:
            with self._client(self._timeout) as client:
                r = client.get(
                    url,
                    params={"ref": self._ref},
                    headers=self._headers(ACCEPT_JSON),
                    auth=self._auth,
                )
        except httpx.HTTPError as e:
            raise NetworkError(f"Listing {url}: {e}") from e
        if r.status_code != 200:
            raise ProtocolError(
                f"Listing {url}: unexpected status code: got {r.status_code}, want 200 (body: {r.text[:500]})"
            )
        try:
            data = r.json()
        except ValueError as e:
            raise ProtocolError(f"Listing {url}: body is not JSON: {e}") from e
        manifest = parse_manifest(data)
        log.debug("Manifest at %s has %d files", self._ref, len(manifest))
        return manifest

    def download(self, entry: RemoteEntry, target: Path, token: Optional[CancelToken] = None) -> int:
        """
        Stream entry's content into a temporary file next to target, verify size and
        git blob hash against the manifest, then atomically replace target. On any
        failure the temporary file is removed and target is left as it was.
        Returns the number of bytes written.
        """
        token = token or CancelToken()
        token.check()
        target = Path(target)
        log.debug("fetching %s from %s", entry.name, entry.download_url)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
        except OSError as e:
            raise FileSystemError(f"Creating temporary file for {target}: {e}") from e
        tmp_path = Path(tmp_name)
        try:
            try:
                with os.fdopen(fd, "wb") as f:
                    written, digest = self._stream_to(entry, f, token)
            except OSError as e:
                # closing flushes buffered writes
                raise FileSystemError(f"Writing {target}: {e}") from e
            if written != entry.size:
                raise ProtocolError(
                    f"Downloading {entry.name}: got {written} bytes, manifest says {entry.size}"
                )
            if digest != entry.sha:
                raise ProtocolError(
                    f"Downloading {entry.name}: content hash {digest} does not match manifest {entry.sha}"
                )
            token.check()
            try:
                os.replace(tmp_path, target)
            except OSError as e:
                raise FileSystemError(f"Replacing {target}: {e}") from e
        except BaseException:
            _remove_quietly(tmp_path)
            raise
        log.debug("fetched %s (%d bytes)", entry.name, written)
        return written

    def _stream_to(self, entry: RemoteEntry, f: BinaryIO, token: CancelToken) -> Tuple[int, str]:
        hasher = GitBlobHasher(entry.size)
        try:
            with self._client(self._timeout_for(token)) as client:
                with client.stream(
                    "GET",
                    entry.download_url,
                    headers=self._headers(ACCEPT_RAW),
                    auth=self._auth,
                ) as r:
                    if r.status_code != 200:
                        raise NetworkError(
                            f"Downloading {entry.name}: unexpected status code: got {r.status_code}, want 200"
                        )
                    # one chunk per network read, so the token is seen while a slow body trickles in
                    for chunk in r.iter_bytes():
                        token.check()
                        try:
                            f.write(chunk)
                        except OSError as e:
                            raise FileSystemError(f"Writing {entry.name}: {e}") from e
                        hasher.update(chunk)
        except httpx.HTTPError as e:
            if token.expired():
                raise DeadlineExceeded(f"Downloading {entry.name}: deadline exceeded ({e})") from e
            raise NetworkError(f"Downloading {entry.name}: {e}") from e
        return hasher.seen, hasher.hexdigest()

    def _timeout_for(self, token: CancelToken) -> float:
        """HTTP timeout never outlives the token's deadline."""
        remaining = token.remaining()
        if remaining is None:
            return self._timeout
        return max(0.001, min(self._timeout, remaining))


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log.warning("Could not remove temporary file %s: %s", path, e)
