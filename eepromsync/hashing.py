"""Git blob hashing, so local files compare directly with the sha in the GitHub contents listing."""

import hashlib
import os
from pathlib import Path
from typing import Union

from eepromsync.errors import FileSystemError

CHUNK_SIZE = 64 * 1024


class GitBlobHasher:
    """Incremental sha1(b"blob <size>\\0" + content). The size must be known up front."""

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("size must not be negative")
        self._size = size
        self._seen = 0
        self._sha = hashlib.sha1(b"blob %d\x00" % size)

    @property
    def size(self) -> int:
        return self._size

    @property
    def seen(self) -> int:
        """Number of content bytes fed so far."""
        return self._seen

    def update(self, chunk: bytes) -> None:
        self._seen += len(chunk)
        self._sha.update(chunk)

    def hexdigest(self) -> str:
        return self._sha.hexdigest()


def git_blob_hash_bytes(data: bytes) -> str:
    """Git blob hash of an in-memory byte string."""
    h = GitBlobHasher(len(data))
    h.update(data)
    return h.hexdigest()


def git_blob_hash(path: Union[str, Path]) -> str:
    """
    Git blob hash of the file at path. The length prefix is the size at open time;
    a file that changes size while being read is an error rather than a partial hash.
    Raises FileSystemError if the file cannot be opened or read.
    """
    try:
        with open(path, "rb") as f:
            h = GitBlobHasher(os.fstat(f.fileno()).st_size)
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    break
                h.update(chunk)
    except OSError as e:
        raise FileSystemError(f"Hashing {path}: {e}") from e
    if h.seen != h.size:
        raise FileSystemError(f"Hashing {path}: size changed while reading ({h.size} -> {h.seen} bytes)")
    return h.hexdigest()
