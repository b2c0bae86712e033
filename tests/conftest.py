# tests/conftest.py
"""
Pytest configuration and fixtures for the bucketsync test suite.

This module provides:
- An in-memory `ObjectStore` implementation standing in for S3 buckets.
- A progress sink that records every call it receives.
- Fixtures wiring stores, checkpoint and executor into a `SyncPipeline`.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Set, Tuple

import pytest

from bucketsync.checkpoint import CheckpointStore
from bucketsync.exceptions import ObjectNotFoundError
from bucketsync.pipeline import SyncPipeline, SyncSummary
from bucketsync.progress import ProgressEvent
from bucketsync.store import ListPage, ObjectStream
from bucketsync.transfer import TransferExecutor


def sized(sizes: Dict[str, int]) -> Dict[str, bytes]:
    """
    Build object contents of the requested sizes.

    Args:
        sizes (Dict[str, int]): Object name to byte size.

    Returns:
        Dict[str, bytes]: Object name to content of exactly that size.
    """
    return {name: bytes(i % 251 for i in range(size)) for name, size in sizes.items()}


class MemoryObjectStore:
    """
    An `ObjectStore` held entirely in memory.

    Listing is paginated with integer offsets as continuation tokens, and
    failures can be injected per page or per object.
    """

    def __init__(
        self,
        name: str,
        objects: Optional[Dict[str, bytes]] = None,
        page_size: int = 2,
        chunk_size: int = 4,
    ) -> None:
        self.name: str = name
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.page_size: int = page_size
        self.chunk_size: int = chunk_size
        self.fail_on_page: Optional[int] = None
        self.fail_puts: Set[str] = set()
        self.list_calls: int = 0
        self.put_calls: List[str] = []

    def fill(self, sizes: Dict[str, int]) -> "MemoryObjectStore":
        """Adds objects of the given sizes, in order."""
        self.objects.update(sized(sizes))
        return self

    def sizes(self) -> Dict[str, int]:
        return {name: len(data) for name, data in self.objects.items()}

    async def list_page(self, token: Optional[str] = None) -> ListPage:
        self.list_calls += 1
        start: int = int(token) if token else 0
        if self.fail_on_page is not None and start // self.page_size == self.fail_on_page:
            raise ConnectionError(f"page {self.fail_on_page} unavailable")
        names: List[str] = list(self.objects)
        page: List[str] = names[start : start + self.page_size]
        end: int = start + self.page_size
        return ListPage(
            entries=[(n, len(self.objects[n])) for n in page],
            next_token=str(end) if end < len(names) else None,
        )

    async def head_size(self, name: str) -> int:
        if name not in self.objects:
            raise ObjectNotFoundError(self.name, name)
        return len(self.objects[name])

    @asynccontextmanager
    async def open_stream(self, name: str) -> AsyncIterator[ObjectStream]:
        if name not in self.objects:
            raise ObjectNotFoundError(self.name, name)
        data: bytes = self.objects[name]

        async def body() -> AsyncIterator[bytes]:
            for i in range(0, len(data), self.chunk_size):
                yield data[i : i + self.chunk_size]

        yield ObjectStream(body=body(), content_length=len(data), content_type="text/plain")

    async def put_stream(
        self,
        name: str,
        body: AsyncIterator[bytes],
        content_length: int,
        content_type: str,
    ) -> None:
        self.put_calls.append(name)
        if name in self.fail_puts:
            raise ConnectionError(f"upload of {name} refused")
        buffer: bytearray = bytearray()
        async for chunk in body:
            buffer.extend(chunk)
        self.objects[name] = bytes(buffer)


class RecordingSink:
    """A progress sink that records every call."""

    def __init__(self) -> None:
        self.runs: List[int] = []
        self.started: List[Tuple[str, int]] = []
        self.events: List[ProgressEvent] = []
        self.finished: List[Tuple[str, bool]] = []
        self.summaries: List[SyncSummary] = []

    def start_run(self, total: int) -> None:
        self.runs.append(total)

    def start_object(self, name: str, size: int) -> None:
        self.started.append((name, size))

    def update(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def finish_object(self, name: str, ok: bool) -> None:
        self.finished.append((name, ok))

    def finish_run(self, summary: SyncSummary) -> None:
        self.summaries.append(summary)


@pytest.fixture(scope="function")
def source_store() -> MemoryObjectStore:
    """Provide an empty in-memory source store."""
    return MemoryObjectStore("memory://source")


@pytest.fixture(scope="function")
def dest_store() -> MemoryObjectStore:
    """Provide an empty in-memory destination store."""
    return MemoryObjectStore("memory://destination")


@pytest.fixture(scope="function")
def checkpoint_store(tmp_path: Path) -> CheckpointStore:
    """
    Provide a checkpoint store rooted in a temporary directory.

    Args:
        tmp_path (Path): The pytest fixture for a temporary directory.

    Returns:
        CheckpointStore: An empty checkpoint store.
    """
    return CheckpointStore(tmp_path / ".sync")


@pytest.fixture(scope="function")
def sink() -> RecordingSink:
    """Provide a recording progress sink."""
    return RecordingSink()


@pytest.fixture(scope="function")
def executor(
    source_store: MemoryObjectStore,
    dest_store: MemoryObjectStore,
    sink: RecordingSink,
) -> TransferExecutor:
    """Provide an executor between the in-memory stores."""
    return TransferExecutor(source_store, dest_store, sink=sink, progress_interval_s=0)


@pytest.fixture(scope="function")
def pipeline(
    source_store: MemoryObjectStore,
    dest_store: MemoryObjectStore,
    checkpoint_store: CheckpointStore,
    executor: TransferExecutor,
) -> SyncPipeline:
    """Provide a sequential pipeline over the in-memory stores."""
    return SyncPipeline(source_store, dest_store, checkpoint_store, executor=executor)
