"""Shared fixtures for bucketsync tests."""

from collections.abc import Iterator
from contextlib import contextmanager
from io import BytesIO
from typing import Any, BinaryIO, Optional

import pytest

from bucketsync.exceptions import ReplicaError, ReplicaNotFoundError
from bucketsync.output import OutputFormatter
from bucketsync.sync.replica import Replica, ReplicaEntry

FIXED_NOW = 10_000.0


class InMemoryReplica(Replica):
    """Dict backed replica with controllable mtimes and injectable failures."""

    def __init__(self, name: str = "memory"):
        self.name = name
        self.files: dict[str, tuple[bytes, float]] = {}
        self.next_mtime = 1_000.0
        self.fail_list = False
        self.fail_writes: set[str] = set()
        self.fail_deletes: set[str] = set()
        self.reads: list[str] = []

    def put(self, key: str, data: bytes, mtime: Optional[float] = None) -> None:
        """Place a file directly, bypassing write failures."""
        if mtime is None:
            mtime = self._tick()
        self.files[key] = (data, mtime)

    def get(self, key: str) -> bytes:
        return self.files[key][0]

    def _tick(self) -> float:
        self.next_mtime += 10.0
        return self.next_mtime

    def describe(self) -> str:
        return f"mem://{self.name}"

    def list(self, prefix: str = "") -> Iterator[ReplicaEntry]:
        if self.fail_list:
            raise ReplicaError(f"{self.name} is unreachable")
        for key in sorted(self.files):
            if key.startswith(prefix):
                data, mtime = self.files[key]
                yield ReplicaEntry(key=key, mtime=mtime, size=len(data))

    @contextmanager
    def open_read(self, key: str) -> Iterator[BinaryIO]:
        if key not in self.files:
            raise ReplicaNotFoundError(f"Not found: {key}", key=key)
        self.reads.append(key)
        yield BytesIO(self.files[key][0])

    def write(self, key: str, stream: BinaryIO) -> None:
        if key in self.fail_writes:
            raise ReplicaError(f"Cannot write {key}", key=key)
        self.files[key] = (stream.read(), self._tick())

    def delete(self, key: str) -> None:
        if key in self.fail_deletes:
            raise ReplicaError(f"Cannot delete {key}", key=key)
        self.files.pop(key, None)

    def stat(self, key: str) -> Optional[ReplicaEntry]:
        if key not in self.files:
            return None
        data, mtime = self.files[key]
        return ReplicaEntry(key=key, mtime=mtime, size=len(data))


@pytest.fixture
def local_replica() -> InMemoryReplica:
    return InMemoryReplica("local")


@pytest.fixture
def remote_replica() -> InMemoryReplica:
    return InMemoryReplica("remote")


@pytest.fixture
def clock() -> Any:
    """A clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def quiet_output() -> OutputFormatter:
    return OutputFormatter(quiet=True)
