"""Replica abstraction over the two sides of a sync pair.

A replica is a flat key space of files addressed by relative, slash
separated keys. ``LocalReplica`` maps keys onto a local directory;
``FsspecReplica`` maps them onto any filesystem fsspec can open from a URI
(``s3://``, ``gs://``, ``memory://``, ...).
"""

import logging
import os
import shutil
import tempfile
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from pathlib import Path, PurePosixPath
from typing import Any, BinaryIO, Optional, Union

import fsspec

from ..exceptions import ReplicaError, ReplicaNotFoundError
from ..utils import DEFAULT_CHUNK_SIZE, to_unix_timestamp

logger = logging.getLogger(__name__)

# Prefix of the hidden temporary keys used for atomic writes
TEMP_PREFIX = ".bucketsync-tmp-"

# Info keys fsspec implementations use for the modification time
_MTIME_KEYS = ("mtime", "LastModified", "last_modified", "updated", "modified", "created")


class ReplicaSide(str, Enum):
    """The two sides of a sync pair."""

    LOCAL = "local"
    REMOTE = "remote"

    @property
    def other(self) -> "ReplicaSide":
        """The opposite side."""
        return ReplicaSide.REMOTE if self is ReplicaSide.LOCAL else ReplicaSide.LOCAL


@dataclass(frozen=True)
class ReplicaEntry:
    """A file observed in a replica listing."""

    key: str
    """Relative key (forward slashes, case-sensitive)"""

    mtime: float
    """Last modification time (Unix timestamp)"""

    size: int
    """File size in bytes"""


def validate_key(key: str) -> str:
    """Reject keys that would escape the replica root.

    Args:
        key: Relative key

    Returns:
        The key unchanged

    Raises:
        ReplicaError: If the key is empty, absolute or contains '..'
    """
    parts = PurePosixPath(key).parts
    if not key or key.startswith("/") or ".." in parts or "\\" in key:
        raise ReplicaError(f"Invalid replica key: {key!r}", key=key)
    return key


class Replica(ABC):
    """Storage operations needed by the sync engine."""

    @abstractmethod
    def list(self, prefix: str = "") -> Iterator[ReplicaEntry]:
        """Lazily enumerate all files whose key starts with prefix."""

    @abstractmethod
    def open_read(self, key: str) -> Any:
        """Return a context manager yielding a readable binary stream.

        Raises:
            ReplicaNotFoundError: If the key does not exist
        """

    @abstractmethod
    def write(self, key: str, stream: BinaryIO) -> None:
        """Create or overwrite key with the content of stream.

        Readers never observe a partially written object.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete key. Deleting a missing key is not an error."""

    @abstractmethod
    def stat(self, key: str) -> Optional[ReplicaEntry]:
        """Return the entry for key, or None if it does not exist."""

    @abstractmethod
    def describe(self) -> str:
        """Human readable location, used in log messages."""

    def exists(self, key: str) -> bool:
        return self.stat(key) is not None

    def read_bytes(self, key: str) -> bytes:
        with self.open_read(key) as f:
            return f.read()

    def write_bytes(self, key: str, data: bytes) -> None:
        self.write(key, BytesIO(data))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.describe()!r})"


class LocalReplica(Replica):
    """Replica backed by a local directory."""

    def __init__(self, root: Union[str, Path], chunk_size: int = DEFAULT_CHUNK_SIZE):
        """Initialize local replica.

        Args:
            root: Directory holding the replica
            chunk_size: Buffer size for streaming copies
        """
        self.root = Path(root).expanduser()
        self.chunk_size = chunk_size

    def describe(self) -> str:
        return str(self.root)

    def _path(self, key: str) -> Path:
        return self.root.joinpath(*validate_key(key).split("/"))

    def list(self, prefix: str = "") -> Iterator[ReplicaEntry]:
        if not self.root.is_dir():
            # A missing root must never look like an empty replica
            raise ReplicaError(f"Local directory does not exist: {self.root}")
        yield from self._walk(self.root, prefix)

    def _walk(self, directory: Path, prefix: str) -> Iterator[ReplicaEntry]:
        try:
            items = sorted(directory.iterdir())
        except OSError as e:
            raise ReplicaError(f"Cannot list {directory}: {e}") from e

        for item in items:
            if item.is_symlink():
                logger.debug(f"Skipping symlink: {item}")
                continue
            if item.is_dir():
                yield from self._walk(item, prefix)
                continue
            if not item.is_file():
                continue

            # Use as_posix() to ensure forward slashes on all platforms
            key = item.relative_to(self.root).as_posix()
            if not key.startswith(prefix):
                continue
            try:
                stat = item.stat()
            except FileNotFoundError:
                # Removed while listing
                continue
            yield ReplicaEntry(key=key, mtime=stat.st_mtime, size=stat.st_size)

    @contextmanager
    def open_read(self, key: str) -> Iterator[BinaryIO]:
        path = self._path(key)
        try:
            f = open(path, "rb")
        except FileNotFoundError as e:
            raise ReplicaNotFoundError(f"Not found: {key}", key=key) from e
        except OSError as e:
            raise ReplicaError(f"Cannot read {key}: {e}", key=key) from e
        with f:
            yield f

    def write(self, key: str, stream: BinaryIO) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=path.parent)
        except OSError as e:
            raise ReplicaError(f"Cannot write {key}: {e}", key=key) from e

        try:
            with os.fdopen(fd, "wb") as tmp:
                shutil.copyfileobj(stream, tmp, self.chunk_size)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except BaseException as e:
            Path(tmp_name).unlink(missing_ok=True)
            if isinstance(e, OSError):
                raise ReplicaError(f"Cannot write {key}: {e}", key=key) from e
            raise

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise ReplicaError(f"Cannot delete {key}: {e}", key=key) from e
        self._remove_empty_parents(path.parent)

    def _remove_empty_parents(self, directory: Path) -> None:
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                # Not empty (or already gone)
                return
            directory = directory.parent

    def stat(self, key: str) -> Optional[ReplicaEntry]:
        path = self._path(key)
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ReplicaError(f"Cannot stat {key}: {e}", key=key) from e
        if not path.is_file():
            return None
        return ReplicaEntry(key=key, mtime=stat.st_mtime, size=stat.st_size)


class FsspecReplica(Replica):
    """Replica backed by an fsspec filesystem (object store or other)."""

    def __init__(
        self,
        url: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        **storage_options: Any,
    ):
        """Initialize fsspec replica.

        Args:
            url: Replica URI, e.g. "s3://bucket/prefix" or "memory://sync"
            chunk_size: Buffer size for streaming copies
            **storage_options: Passed through to the fsspec filesystem
        """
        self.url = url
        self.chunk_size = chunk_size
        self.fs, root = fsspec.core.url_to_fs(url, **storage_options)
        self.root = root.rstrip("/")
        protocols = self.fs.protocol
        if isinstance(protocols, str):
            protocols = (protocols,)
        # Object stores have no directories to create
        self._needs_parents = bool({"file", "local"} & set(protocols))

    def describe(self) -> str:
        return self.url

    def _path(self, key: str) -> str:
        validate_key(key)
        return f"{self.root}/{key}" if self.root else key

    def _key(self, name: str) -> Optional[str]:
        name = name.rstrip("/")
        if self.root:
            if not name.startswith(self.root + "/"):
                return None
            return name[len(self.root) + 1 :]
        return name.lstrip("/")

    def _entry(self, key: str, info: dict) -> ReplicaEntry:
        mtime = None
        for field in _MTIME_KEYS:
            mtime = to_unix_timestamp(info.get(field))
            if mtime is not None:
                break
        if mtime is None:
            logger.debug(f"No modification time reported for {key}")
            mtime = 0.0
        return ReplicaEntry(key=key, mtime=mtime, size=int(info.get("size") or 0))

    def list(self, prefix: str = "") -> Iterator[ReplicaEntry]:
        # Listings must reflect the current state, not a cached one
        self.fs.invalidate_cache(self.root or None)
        try:
            found = self.fs.find(self.root, withdirs=False, detail=True)
        except FileNotFoundError:
            return
        except OSError as e:
            raise ReplicaError(f"Cannot list {self.url}: {e}") from e

        for name in sorted(found):
            info = found[name]
            if info.get("type") == "directory":
                continue
            key = self._key(name)
            if not key or not key.startswith(prefix):
                continue
            yield self._entry(key, info)

    @contextmanager
    def open_read(self, key: str) -> Iterator[BinaryIO]:
        path = self._path(key)
        try:
            f = self.fs.open(path, "rb")
        except FileNotFoundError as e:
            raise ReplicaNotFoundError(f"Not found: {key}", key=key) from e
        except OSError as e:
            raise ReplicaError(f"Cannot read {key}: {e}", key=key) from e
        with f:
            yield f

    def write(self, key: str, stream: BinaryIO) -> None:
        path = self._path(key)
        parent = path.rsplit("/", 1)[0] if "/" in path else ""
        if parent and self._needs_parents:
            self.fs.makedirs(parent, exist_ok=True)
        # Stream into a hidden sibling first; object stores commit whatever
        # was written when the file is closed, even after a failed copy
        tmp_name = f"{TEMP_PREFIX}{uuid.uuid4().hex}"
        target = f"{parent}/{tmp_name}" if parent else tmp_name

        try:
            with self.fs.open(target, "wb") as f:
                shutil.copyfileobj(stream, f, self.chunk_size)
            self.fs.mv(target, path)
        except BaseException as e:
            if self.fs.exists(target):
                self.fs.rm(target)
            if isinstance(e, OSError):
                raise ReplicaError(f"Cannot write {key}: {e}", key=key) from e
            raise
        finally:
            self.fs.invalidate_cache(path)

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            self.fs.rm(path)
        except FileNotFoundError:
            logger.debug(f"Delete of missing key {key} ignored")
        except OSError as e:
            raise ReplicaError(f"Cannot delete {key}: {e}", key=key) from e
        finally:
            self.fs.invalidate_cache(path)

    def stat(self, key: str) -> Optional[ReplicaEntry]:
        path = self._path(key)
        try:
            info = self.fs.info(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ReplicaError(f"Cannot stat {key}: {e}", key=key) from e
        if info.get("type") == "directory":
            return None
        return self._entry(key, info)


def open_replica(location: Union[str, Path], **storage_options: Any) -> Replica:
    """Open a replica from a local path or a URI.

    Args:
        location: Local directory path, file:// URI or any fsspec URI
        **storage_options: Options for fsspec backed replicas

    Returns:
        LocalReplica for local paths, FsspecReplica otherwise

    Examples:
        >>> open_replica("/srv/data")
        LocalReplica('/srv/data')
        >>> open_replica("memory://bucket").describe()
        'memory://bucket'
    """
    if isinstance(location, Path):
        return LocalReplica(location)
    if location.startswith("file://"):
        return LocalReplica(location[len("file://") :])
    if "://" not in location:
        return LocalReplica(location)
    return FsspecReplica(location, **storage_options)
