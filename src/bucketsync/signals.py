# src/bucketsync/signals.py
"""
Graceful shutdown for sync runs.

SIGINT and SIGTERM are translated into an `asyncio.Event`. The pipeline
stops starting new transfers once it is set, lets in-flight transfers
finish and keeps the checkpoint so the next run resumes.
"""

import asyncio
import logging
import os
import signal
from types import FrameType
from typing import Any, Callable, Dict, Optional, Tuple, Union

logger: logging.Logger = logging.getLogger(__name__)

_SignalHandler = Union[Callable[[int, Optional[FrameType]], Any], int, None]

HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """
    An async context manager yielding an event set on the first signal.

    A second signal exits the process immediately. The journal is fsynced
    after every completed object, so the checkpoint stays usable.
    """

    def __init__(self) -> None:
        self._event: asyncio.Event = asyncio.Event()
        self._previous: Dict[signal.Signals, _SignalHandler] = {}

    def _handle(self, loop: asyncio.AbstractEventLoop, sig: int) -> None:
        if self._event.is_set():
            logger.critical("Second shutdown signal received. Exiting immediately.")
            os._exit(130)
        logger.warning(
            f"Received {signal.Signals(sig).name}. Finishing in-flight transfers; "
            "send again to exit immediately."
        )
        loop.call_soon_threadsafe(self._event.set)

    async def __aenter__(self) -> asyncio.Event:
        """
        Installs the signal handlers.

        Returns:
            asyncio.Event: Set when a shutdown has been requested.
        """
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            try:
                self._previous[sig] = signal.signal(
                    sig, lambda s, _frame: self._handle(loop, s)
                )
            except (ValueError, OSError) as e:
                # Only the main thread may install handlers
                logger.debug(f"Could not set handler for {sig.name}: {e}")
        return self._event

    async def __aexit__(self, *args: Any) -> None:
        """Restores the handlers that were active before entry."""
        for sig, handler in self._previous.items():
            if handler is None:
                continue
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not restore handler for {sig.name}: {e}")
        self._previous.clear()
