# src/bucketsync/pipeline.py
"""Core orchestration logic for bucketsync runs."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from bucketsync.checkpoint import CheckpointStore, RestoredCheckpoint
from bucketsync.exceptions import ObjectNotFoundError, TransferError
from bucketsync.inventory import Inventory, list_inventories
from bucketsync.planner import CopyReason, PlanEntry, ReconciliationPlan, plan
from bucketsync.progress import ProgressSink
from bucketsync.store import ObjectStore
from bucketsync.transfer import TransferExecutor, TransferResult

logger: logging.Logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Stages of a sync run."""

    IDLE = "idle"
    LISTING = "listing"
    RECONCILING = "reconciling"
    TRANSFERRING = "transferring"
    FINALIZING = "finalizing"
    SINGLE_CHECK = "single_check"
    SINGLE_TRANSFER = "single_transfer"
    SINGLE_SKIP = "single_skip"
    DONE = "done"


@dataclass
class SyncSummary:
    """
    Counts reported at the end of every run.

    Attributes:
        synced (int): Objects copied successfully.
        skipped (int): Objects already present at the same size.
        failed (int): Objects whose transfer failed.
        extra (int): Destination-only objects seen (full runs only).
        interrupted (bool): True if a shutdown stopped the run early.
        checkpoint_preserved (bool): True if the checkpoint was kept for a rerun.
    """

    synced: int = 0
    skipped: int = 0
    failed: int = 0
    extra: int = 0
    interrupted: bool = False
    checkpoint_preserved: bool = False


@dataclass
class VerifyReport:
    """
    Differences between the stores found by `verify`.

    Attributes:
        missing (List[str]): Source objects absent from the destination.
        mismatched (List[Tuple[str, int, int]]): `(name, source size, destination size)`.
        extra (List[str]): Destination objects absent from the source.
    """

    missing: List[str] = field(default_factory=list)
    mismatched: List[Tuple[str, int, int]] = field(default_factory=list)
    extra: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        """True when every source object is present at the same size."""
        return not self.missing and not self.mismatched


class SyncPipeline:
    """Orchestrates full, single-object and verification runs."""

    def __init__(
        self,
        source: ObjectStore,
        destination: ObjectStore,
        checkpoint: CheckpointStore,
        executor: Optional[TransferExecutor] = None,
        shutdown_event: Optional[asyncio.Event] = None,
        concurrency: int = 1,
    ) -> None:
        """
        Initializes the pipeline with its collaborators.

        Args:
            source (ObjectStore): The store objects are copied from.
            destination (ObjectStore): The store objects are copied to.
            checkpoint (CheckpointStore): Persistent resume state.
            executor (TransferExecutor, optional): Performs the byte copies.
                Defaults to a source -> destination executor without progress.
            shutdown_event (asyncio.Event, optional): When set, no new
                transfers are started.
            concurrency (int): Number of transfer workers. 1 keeps strict
                copy-set order.
        """
        self._source: ObjectStore = source
        self._destination: ObjectStore = destination
        self._checkpoint: CheckpointStore = checkpoint
        self._executor: TransferExecutor = executor or TransferExecutor(
            source, destination
        )
        self._shutdown_event: asyncio.Event = shutdown_event or asyncio.Event()
        self._concurrency: int = max(1, concurrency)
        self.state: SyncState = SyncState.IDLE
        self.history: List[SyncState] = [SyncState.IDLE]

    @property
    def _sink(self) -> ProgressSink:
        return self._executor.sink

    def _set_state(self, state: SyncState) -> None:
        logger.debug(f"State: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _reset(self) -> None:
        self.state = SyncState.IDLE
        self.history = [SyncState.IDLE]

    async def _load_inventories(self) -> Tuple[Inventory, Inventory]:
        restored: Optional[RestoredCheckpoint] = self._checkpoint.load_snapshot()
        if restored is not None:
            logger.info(
                f"Found unfinished sync checkpoint "
                f"({self._checkpoint.age().total_seconds():.0f}s old). Resuming..."
            )
            logger.info(f"Restored {restored.replayed} completed objects from journal.")
            return restored.source, restored.destination

        self._set_state(SyncState.LISTING)
        logger.info("Fetching object lists...")
        source_inventory, dest_inventory = await list_inventories(
            self._source, self._destination
        )
        # Persist before the first copy so a crash from here on can resume
        self._checkpoint.save_snapshot(source_inventory, dest_inventory)
        return source_inventory, dest_inventory

    async def run(self) -> SyncSummary:
        """
        Executes a full sync.

        Resumes from the checkpoint when one exists, otherwise lists both
        stores and saves a fresh snapshot. Every object in the copy-set is
        then transferred and journaled. The checkpoint is cleared only when
        the whole copy-set succeeded.

        Returns:
            SyncSummary: Synced, skipped and failed counts.

        Raises:
            ListingError: If a store listing fails and there is no checkpoint.
        """
        self._reset()
        logger.info("Starting sync.")
        source_inventory, dest_inventory = await self._load_inventories()
        logger.info(f"Found {len(source_inventory)} objects in '{self._source.name}'.")
        logger.info(
            f"Found {len(dest_inventory)} objects in '{self._destination.name}'."
        )

        self._set_state(SyncState.RECONCILING)
        reconciliation: ReconciliationPlan = plan(source_inventory, dest_inventory)
        summary: SyncSummary = SyncSummary(
            skipped=len(reconciliation.skipped), extra=len(reconciliation.extra)
        )
        logger.info(
            f"{len(reconciliation.copy_set)} objects to copy "
            f"({len(reconciliation.missing)} missing, "
            f"{len(reconciliation.changed)} changed), "
            f"{summary.skipped} up to date."
        )
        if reconciliation.extra:
            logger.info(
                f"{len(reconciliation.extra)} objects exist only in "
                f"'{self._destination.name}' and are left untouched."
            )

        self._set_state(SyncState.TRANSFERRING)
        summary.interrupted = await self._run_transfers(
            reconciliation.copy_set, dest_inventory, summary
        )

        self._set_state(SyncState.FINALIZING)
        if summary.failed == 0 and not summary.interrupted:
            self._checkpoint.clear()
        else:
            summary.checkpoint_preserved = True
            if summary.interrupted:
                logger.warning("Sync interrupted. Checkpoint preserved for resume.")
            if summary.failed:
                logger.warning(
                    f"Sync finished with {summary.failed} failures. "
                    "Checkpoint preserved for retry."
                )

        self._sink.finish_run(summary)
        self._set_state(SyncState.DONE)
        return summary

    async def _run_transfers(
        self,
        copy_set: List[PlanEntry],
        dest_inventory: Inventory,
        summary: SyncSummary,
    ) -> bool:
        """
        Drains the copy-set with a pool of workers.

        Args:
            copy_set (List[PlanEntry]): Objects to transfer, in order.
            dest_inventory (Inventory): The live destination inventory.
            summary (SyncSummary): Counters updated in place.

        Returns:
            bool: True if a shutdown left objects unprocessed.
        """
        queue: asyncio.Queue[PlanEntry] = asyncio.Queue()
        for entry in copy_set:
            queue.put_nowait(entry)

        self._sink.start_run(len(copy_set))
        num_workers: int = min(self._concurrency, len(copy_set))
        workers: List[asyncio.Task[None]] = [
            asyncio.create_task(self._transfer_worker(i, queue, dest_inventory, summary))
            for i in range(num_workers)
        ]
        await asyncio.gather(*workers)

        if not queue.empty():
            logger.warning(f"Shutdown left {queue.qsize()} objects unprocessed.")
            return True
        return False

    async def _transfer_worker(
        self,
        worker_id: int,
        queue: "asyncio.Queue[PlanEntry]",
        dest_inventory: Inventory,
        summary: SyncSummary,
    ) -> None:
        """Pulls entries until the queue is empty or shutdown is requested."""
        logger.debug(f"Worker {worker_id} started.")
        while not self._shutdown_event.is_set():
            try:
                entry: PlanEntry = queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._sync_entry(entry, dest_inventory, summary)
        logger.debug(f"Worker {worker_id} finished.")

    async def _sync_entry(
        self, entry: PlanEntry, dest_inventory: Inventory, summary: SyncSummary
    ) -> None:
        """
        Transfers one copy-set entry and records the outcome.

        A success is journaled before the in-memory destination inventory is
        updated. A failure is counted and logged, never raised.

        Args:
            entry (PlanEntry): The object to transfer.
            dest_inventory (Inventory): The live destination inventory.
            summary (SyncSummary): Counters updated in place.
        """
        if dest_inventory.get(entry.name) == entry.size:
            summary.skipped += 1
            return

        verb: str = "Updating" if entry.reason is CopyReason.CHANGED else "Syncing"
        logger.debug(f"{verb}: {entry.name}")
        self._sink.start_object(entry.name, entry.size)
        try:
            await self._executor.transfer(entry.name, entry.size)
        except TransferError as e:
            summary.failed += 1
            self._sink.finish_object(entry.name, False)
            if isinstance(e.cause, ObjectNotFoundError):
                logger.warning(f"'{entry.name}' is no longer in the source: {e.cause}")
            else:
                logger.error(f"Failed to sync '{entry.name}': {e}")
            return

        # Journal the listed size so a resume from the same snapshot skips it
        self._checkpoint.append_journal(entry.name, entry.size)
        dest_inventory[entry.name] = entry.size
        summary.synced += 1
        self._sink.finish_object(entry.name, True)
        logger.info(f"Synced: {entry.name}")

    async def sync_object(self, name: str) -> SyncSummary:
        """
        Syncs exactly one object, ignoring the full inventories.

        The checkpoint is never read or written.

        Args:
            name (str): The object to sync.

        Returns:
            SyncSummary: One of synced, skipped or failed is 1.
        """
        self._reset()
        self._set_state(SyncState.SINGLE_CHECK)
        summary: SyncSummary = SyncSummary()
        logger.info(f"Starting single object sync: {name}")

        try:
            source_size: int = await self._source.head_size(name)
        except Exception as e:
            logger.error(f"Cannot sync '{name}': {e}")
            summary.failed = 1
            self._set_state(SyncState.DONE)
            return summary

        dest_size: Optional[int]
        try:
            dest_size = await self._destination.head_size(name)
        except ObjectNotFoundError:
            dest_size = None
        except Exception as e:
            logger.warning(
                f"Could not check '{name}' in '{self._destination.name}': {e}. "
                "Transferring anyway."
            )
            dest_size = None

        if dest_size == source_size:
            self._set_state(SyncState.SINGLE_SKIP)
            logger.info(f"Skipped: {name} (already up to date)")
            summary.skipped = 1
            self._set_state(SyncState.DONE)
            return summary

        self._set_state(SyncState.SINGLE_TRANSFER)
        self._sink.start_run(1)
        self._sink.start_object(name, source_size)
        try:
            await self._executor.transfer(name, source_size)
        except TransferError as e:
            logger.error(f"Failed to sync '{name}': {e}")
            summary.failed = 1
            self._sink.finish_object(name, False)
        else:
            logger.info(f"Synced: {name}")
            summary.synced = 1
            self._sink.finish_object(name, True)
        self._sink.finish_run(summary)
        self._set_state(SyncState.DONE)
        return summary

    async def verify(self, sample: int = 10) -> VerifyReport:
        """
        Compares fresh listings of both stores without copying anything.

        Args:
            sample (int): How many names of each kind to log.

        Returns:
            VerifyReport: Missing, size-mismatched and extra objects.
        """
        logger.info("Starting verification...")
        source_inventory, dest_inventory = await list_inventories(
            self._source, self._destination
        )
        logger.info(f"'{self._source.name}': {len(source_inventory)} objects")
        logger.info(f"'{self._destination.name}': {len(dest_inventory)} objects")

        reconciliation: ReconciliationPlan = plan(source_inventory, dest_inventory)
        report: VerifyReport = VerifyReport(
            missing=[e.name for e in reconciliation.missing],
            mismatched=[
                (e.name, e.size, dest_inventory[e.name]) for e in reconciliation.changed
            ],
            extra=sorted(reconciliation.extra),
        )

        if report.passed:
            logger.info("Verification passed: all objects match (ignoring extras).")
        else:
            logger.error("Verification failed.")
        _log_sample(
            logging.ERROR, f"Missing in '{self._destination.name}'", report.missing, sample
        )
        _log_sample(
            logging.ERROR,
            "Size mismatch",
            [f"{n} (source: {s}, destination: {d})" for n, s, d in report.mismatched],
            sample,
        )
        _log_sample(
            logging.WARNING,
            f"Extra in '{self._destination.name}'",
            report.extra,
            sample,
        )
        return report

    async def copyback(self, name: str) -> TransferResult:
        """
        Copies one object from the destination back to the source.

        Args:
            name (str): The object to copy back.

        Returns:
            TransferResult: The completed transfer.

        Raises:
            ObjectNotFoundError: If the destination does not hold `name`.
            TransferError: If the copy fails.
        """
        logger.info(
            f"Copying '{name}' from '{self._destination.name}' "
            f"to '{self._source.name}'"
        )
        size: int = await self._destination.head_size(name)
        executor: TransferExecutor = self._executor.reversed()
        self._sink.start_object(name, size)
        try:
            result: TransferResult = await executor.transfer(name, size)
        except TransferError:
            self._sink.finish_object(name, False)
            raise
        self._sink.finish_object(name, True)
        logger.info(f"Copied '{name}' back ({result.size} bytes).")
        return result


def _log_sample(level: int, title: str, items: List[str], sample: int) -> None:
    if not items:
        return
    logger.log(level, f"{title} ({len(items)}):")
    for item in items[:sample]:
        logger.log(level, f"  - {item}")
    if len(items) > sample:
        logger.log(level, f"  ...and {len(items) - sample} more")
