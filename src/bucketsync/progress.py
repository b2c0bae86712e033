# src/bucketsync/progress.py
"""
Progress reporting for object transfers.

The transfer engine reports to a `ProgressSink`. Sink methods are plain
synchronous calls that must return quickly. The engine never waits on
rendering. `RichProgressSink` draws bars in the terminal and
`NullProgressSink` discards everything.
"""

import time
from dataclasses import dataclass
from types import TracebackType
from typing import TYPE_CHECKING, Callable, Dict, Optional, Protocol, Type

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)

if TYPE_CHECKING:
    from bucketsync.pipeline import SyncSummary


@dataclass(frozen=True)
class ProgressEvent:
    """
    A byte-level progress update for one object.

    Attributes:
        name (str): The object being transferred.
        bytes_transferred (int): Bytes piped so far.
        total_bytes (int): Expected size, 0 when unknown.
        speed_bps (float): Throughput since the previous event, in bytes/s.
        done (bool): True on the final event for this object.
    """

    name: str
    bytes_transferred: int
    total_bytes: int
    speed_bps: float
    done: bool = False


class ProgressSink(Protocol):
    """Receives per-object and per-run progress from the engine."""

    def start_run(self, total: int) -> None: ...

    def start_object(self, name: str, size: int) -> None: ...

    def update(self, event: ProgressEvent) -> None: ...

    def finish_object(self, name: str, ok: bool) -> None: ...

    def finish_run(self, summary: "SyncSummary") -> None: ...


class NullProgressSink:
    """A sink that ignores all progress."""

    def start_run(self, total: int) -> None:
        pass

    def start_object(self, name: str, size: int) -> None:
        pass

    def update(self, event: ProgressEvent) -> None:
        pass

    def finish_object(self, name: str, ok: bool) -> None:
        pass

    def finish_run(self, summary: "SyncSummary") -> None:
        pass


class ProgressThrottle:
    """
    Turns a stream of byte counts into rate-limited `ProgressEvent`s.

    Emits at most once per `interval_s`, except for the final event from
    `finish()`, which is always emitted.
    """

    def __init__(
        self,
        name: str,
        total_bytes: int,
        sink: ProgressSink,
        interval_s: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the throttle.

        Args:
            name (str): The object being transferred.
            total_bytes (int): Expected size, 0 when unknown.
            sink (ProgressSink): Where events go.
            interval_s (float): Minimum seconds between emitted events.
            clock (Callable[[], float]): Monotonic time source.
        """
        self._name: str = name
        self._total: int = total_bytes
        self._sink: ProgressSink = sink
        self._interval_s: float = interval_s
        self._clock: Callable[[], float] = clock
        self._started: float = clock()
        self._last_emit: float = self._started
        self._last_bytes: int = 0
        self.bytes_transferred: int = 0

    def advance(self, n: int) -> None:
        """Counts `n` more bytes and emits an event if the interval elapsed."""
        self.bytes_transferred += n
        now: float = self._clock()
        if now - self._last_emit >= self._interval_s:
            self._emit(now, done=False)

    def finish(self) -> None:
        """Emits the final event."""
        self._emit(self._clock(), done=True)

    def _emit(self, now: float, done: bool) -> None:
        elapsed: float = now - self._last_emit
        if elapsed > 0:
            speed: float = (self.bytes_transferred - self._last_bytes) / elapsed
        else:
            total_elapsed: float = now - self._started
            speed = self.bytes_transferred / total_elapsed if total_elapsed > 0 else 0.0
        self._sink.update(
            ProgressEvent(
                name=self._name,
                bytes_transferred=self.bytes_transferred,
                total_bytes=self._total,
                speed_bps=speed,
                done=done,
            )
        )
        self._last_emit = now
        self._last_bytes = self.bytes_transferred


def format_bytes(num_bytes: float, decimals: int = 2) -> str:
    """
    Renders a byte count with a binary unit, e.g. `1.5 MB`.

    Args:
        num_bytes (float): The byte count.
        decimals (int): Digits after the decimal point.

    Returns:
        str: The human-readable size.
    """
    units = ["Bytes", "KB", "MB", "GB", "TB", "PB"]
    value: float = float(num_bytes)
    for unit in units:
        if abs(value) < 1024 or unit == units[-1]:
            if unit == "Bytes":
                return f"{int(value)} {unit}"
            return f"{value:.{decimals}f} {unit}"
        value /= 1024
    return f"{value:.{decimals}f} {units[-1]}"


class RichProgressSink:
    """
    Renders an overall object bar plus one byte bar per active transfer.

    Use as a context manager so the live display is started and stopped.
    """

    def __init__(self, console: Optional[Console] = None) -> None:
        self._progress: Progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.fields[detail]}"),
            TextColumn("[bold cyan]{task.fields[speed]}"),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        )
        self._run_task: Optional[TaskID] = None
        self._run_total: int = 0
        self._run_done: int = 0
        self._object_tasks: Dict[str, TaskID] = {}
        self._object_sizes: Dict[str, int] = {}

    def __enter__(self) -> "RichProgressSink":
        self._progress.start()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self._progress.stop()

    def start_run(self, total: int) -> None:
        self._run_total = total
        self._run_done = 0
        self._run_task = self._progress.add_task(
            "Syncing...", total=total, detail=f"0/{total} objects", speed=""
        )

    def start_object(self, name: str, size: int) -> None:
        self._object_sizes[name] = size
        self._object_tasks[name] = self._progress.add_task(
            name,
            total=size or None,
            detail=f"0 Bytes / {format_bytes(size)}",
            speed="0 Bytes/s",
        )

    def update(self, event: ProgressEvent) -> None:
        task_id: Optional[TaskID] = self._object_tasks.get(event.name)
        if task_id is None:
            return
        speed: str = "Done" if event.done else f"{format_bytes(event.speed_bps)}/s"
        detail: str = (
            f"{format_bytes(event.bytes_transferred)} / "
            f"{format_bytes(self._object_sizes.get(event.name, event.total_bytes))}"
        )
        self._progress.update(
            task_id, completed=event.bytes_transferred, detail=detail, speed=speed
        )

    def finish_object(self, name: str, ok: bool) -> None:
        task_id: Optional[TaskID] = self._object_tasks.pop(name, None)
        self._object_sizes.pop(name, None)
        if task_id is not None:
            self._progress.remove_task(task_id)
        if self._run_task is not None:
            self._progress.advance(self._run_task)
            self._run_done += 1
            self._progress.update(
                self._run_task, detail=f"{self._run_done}/{self._run_total} objects"
            )

    def finish_run(self, summary: "SyncSummary") -> None:
        if self._run_task is not None:
            self._progress.remove_task(self._run_task)
            self._run_task = None
