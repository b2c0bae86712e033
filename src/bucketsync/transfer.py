# src/bucketsync/transfer.py
"""
Defines the single-object transfer executor.

An object is streamed from the source store straight into the destination
store, chunk by chunk, so memory use does not grow with object size. Each
transfer runs under a timeout that scales with the object's size.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from bucketsync.exceptions import TransferError
from bucketsync.progress import NullProgressSink, ProgressSink, ProgressThrottle
from bucketsync.store import ObjectStore, ObjectStream

logger: logging.Logger = logging.getLogger(__name__)

MIB: int = 1024**2


def transfer_timeout(
    size: int,
    floor_s: int = 600,
    step_bytes: int = 100 * MIB,
    step_s: int = 60,
) -> float:
    """
    Computes the time allowed for one object: one step per `step_bytes`,
    never less than `floor_s`.

    Args:
        size (int): The object size in bytes.
        floor_s (int): The minimum timeout in seconds.
        step_bytes (int): Bytes covered by each step.
        step_s (int): Seconds per step.

    Returns:
        float: The timeout in seconds.
    """
    return float(max(floor_s, math.ceil(size / step_bytes) * step_s))


@dataclass(frozen=True)
class TransferResult:
    """
    A completed transfer.

    Attributes:
        name (str): The object name.
        size (int): Bytes written to the destination.
        duration_s (float): Wall-clock duration of the transfer.
    """

    name: str
    size: int
    duration_s: float


class TransferExecutor:
    """Streams objects from one store into another."""

    def __init__(
        self,
        source: ObjectStore,
        destination: ObjectStore,
        sink: Optional[ProgressSink] = None,
        progress_interval_s: float = 0.5,
        timeout_floor_s: int = 600,
        timeout_step_bytes: int = 100 * MIB,
        timeout_step_s: int = 60,
    ) -> None:
        """
        Initialize the executor.

        Args:
            source (ObjectStore): Store to read from.
            destination (ObjectStore): Store to write to.
            sink (ProgressSink, optional): Receives byte-level progress.
            progress_interval_s (float): Minimum seconds between progress events.
            timeout_floor_s (int): Minimum per-object timeout in seconds.
            timeout_step_bytes (int): Object bytes granted one more timeout step.
            timeout_step_s (int): Seconds per timeout step.
        """
        self.source: ObjectStore = source
        self.destination: ObjectStore = destination
        self.sink: ProgressSink = sink or NullProgressSink()
        self._progress_interval_s: float = progress_interval_s
        self._timeout_floor_s: int = timeout_floor_s
        self._timeout_step_bytes: int = timeout_step_bytes
        self._timeout_step_s: int = timeout_step_s

    def reversed(self) -> "TransferExecutor":
        """Returns an executor with the same settings copying the other way."""
        return TransferExecutor(
            self.destination,
            self.source,
            sink=self.sink,
            progress_interval_s=self._progress_interval_s,
            timeout_floor_s=self._timeout_floor_s,
            timeout_step_bytes=self._timeout_step_bytes,
            timeout_step_s=self._timeout_step_s,
        )

    def timeout_for(self, size: int) -> float:
        return transfer_timeout(
            size, self._timeout_floor_s, self._timeout_step_bytes, self._timeout_step_s
        )

    async def transfer(self, name: str, expected_size: int) -> TransferResult:
        """
        Copies one object, keeping its name.

        Args:
            name (str): The object name in both stores.
            expected_size (int): The size the source was listed with.

        Returns:
            TransferResult: The outcome, including the bytes actually written.

        Raises:
            TransferError: On any stream, network, lookup or timeout failure.
        """
        start_time: float = time.monotonic()
        timeout: float = self.timeout_for(expected_size)
        try:
            size: int = await asyncio.wait_for(
                self._pipe(name, expected_size), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise TransferError(
                name, TimeoutError(f"timed out after {timeout:.0f}s")
            ) from e
        except Exception as e:
            raise TransferError(name, e) from e

        if size != expected_size:
            logger.warning(
                f"'{name}' was listed at {expected_size} bytes "
                f"but {size} bytes were copied."
            )
        duration_s: float = time.monotonic() - start_time
        logger.debug(f"Transferred '{name}' ({size} bytes) in {duration_s:.2f}s.")
        return TransferResult(name=name, size=size, duration_s=duration_s)

    async def _pipe(self, name: str, expected_size: int) -> int:
        """Pumps the source stream into the destination, returning the byte count."""
        stream: ObjectStream
        async with self.source.open_stream(name) as stream:
            total: int = stream.content_length or expected_size
            throttle: ProgressThrottle = ProgressThrottle(
                name, total, self.sink, self._progress_interval_s
            )

            async def counted() -> AsyncIterator[bytes]:
                async for chunk in stream.body:
                    throttle.advance(len(chunk))
                    yield chunk

            await self.destination.put_stream(
                name, counted(), total, stream.content_type
            )
        throttle.finish()
        return throttle.bytes_transferred
