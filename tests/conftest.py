"""Pytest configuration: keep the caller's GitHub credentials and EEPROMSYNC_* settings out of tests."""

import os
from pathlib import Path
from typing import Callable, Dict
from unittest.mock import MagicMock

import pytest

from eepromsync.hashing import git_blob_hash_bytes
from eepromsync.models import RemoteEntry


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Drop environment variables that would change Settings or credential resolution."""
    for key in list(os.environ):
        if key.upper().startswith("EEPROMSYNC_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("GITHUB_USER", raising=False)
    monkeypatch.delenv("GITHUB_AUTH_TOKEN", raising=False)


def _entry(name: str, content: bytes) -> RemoteEntry:
    return RemoteEntry(
        name=name,
        sha=git_blob_hash_bytes(content),
        size=len(content),
        download_url=f"https://raw.githubusercontent.com/raspberrypi/rpi-eeprom/abc/{name}",
    )


@pytest.fixture
def make_entry() -> Callable[[str, bytes], RemoteEntry]:
    """Factory: manifest entry whose sha and size describe content."""
    return _entry


@pytest.fixture
def make_api() -> Callable[[Dict[str, bytes]], MagicMock]:
    """Factory: API double whose manifest is built from remote and whose download() writes remote content."""

    def _make(remote: Dict[str, bytes]) -> MagicMock:
        api = MagicMock()
        api.ref = "abc"
        api.fetch_manifest.return_value = {name: _entry(name, c) for name, c in remote.items()}

        def _download(entry, target, token):
            token.check()
            Path(target).write_bytes(remote[entry.name])
            return entry.size

        api.download.side_effect = _download
        return api

    return _make
