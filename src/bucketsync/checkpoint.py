# src/bucketsync/checkpoint.py
"""
Handles resumable progress using a snapshot file and an append-only journal.

The snapshot captures both inventories at the moment listing finished. The
journal records every object that completed afterwards. Replaying the
journal onto the snapshot's destination inventory reconstructs what the
destination held when the previous run stopped, without listing either
store again.
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from bucketsync.exceptions import CheckpointCorruptError, JournalLineError
from bucketsync.inventory import Inventory

logger: logging.Logger = logging.getLogger(__name__)

SNAPSHOT_FILE: str = "snapshot.json"
JOURNAL_FILE: str = "journal.log"


@dataclass(frozen=True)
class JournalEntry:
    """One completed transfer recorded in the journal."""

    name: str
    size: int


@dataclass(frozen=True)
class RestoredCheckpoint:
    """
    Inventories restored from a checkpoint.

    Attributes:
        source (Inventory): The snapshot's source inventory.
        destination (Inventory): The snapshot's destination inventory with
            the journal replayed onto it.
        replayed (int): Number of journal entries applied.
        timestamp (float): When the snapshot was taken, in epoch seconds.
    """

    source: Inventory
    destination: Inventory
    replayed: int
    timestamp: float


def parse_journal_line(line: str) -> JournalEntry:
    """
    Parses one journal line of the form `["name", size]`.

    Args:
        line (str): A single line from the journal, without its newline.

    Returns:
        JournalEntry: The decoded entry.

    Raises:
        JournalLineError: If the line is not a two-field record with a
            non-negative integer size.
    """
    try:
        fields: Any = json.loads(line)
    except json.JSONDecodeError as e:
        raise JournalLineError(f"Not a journal record: {line!r}") from e
    if not isinstance(fields, list) or len(fields) != 2:
        raise JournalLineError(f"Expected 2 fields: {line!r}")
    name, size = fields
    if not isinstance(name, str) or not name:
        raise JournalLineError(f"Invalid object name: {line!r}")
    # bool is an int subclass
    if isinstance(size, bool) or not isinstance(size, int) or size < 0:
        raise JournalLineError(f"Invalid size: {line!r}")
    return JournalEntry(name=name, size=size)


def format_journal_line(name: str, size: int) -> str:
    """Encodes one journal record, newline included."""
    return json.dumps([name, size], ensure_ascii=False) + "\n"


def _decode_inventory(raw: Any, label: str) -> Inventory:
    if not isinstance(raw, list):
        raise CheckpointCorruptError(f"Snapshot field '{label}' is not a list.")
    inventory: Inventory = {}
    for item in raw:
        if (
            not isinstance(item, list)
            or len(item) != 2
            or not isinstance(item[0], str)
            or isinstance(item[1], bool)
            or not isinstance(item[1], int)
        ):
            raise CheckpointCorruptError(f"Malformed entry in '{label}': {item!r}")
        inventory[item[0]] = item[1]
    return inventory


class CheckpointStore:
    """
    Owns the on-disk checkpoint: `snapshot.json` plus `journal.log`.

    Only one running instance may use a given directory at a time.
    """

    def __init__(self, directory: Path) -> None:
        """
        Initializes the store. Nothing is created until the first write.

        Args:
            directory (Path): The directory holding the checkpoint files.
        """
        self.directory: Path = directory
        self.snapshot_path: Path = directory / SNAPSHOT_FILE
        self.journal_path: Path = directory / JOURNAL_FILE

    def has_checkpoint(self) -> bool:
        """
        Checks whether a snapshot exists. A journal alone does not count.

        Returns:
            bool: True if a snapshot file is present.
        """
        return self.snapshot_path.is_file()

    def save_snapshot(self, source: Inventory, destination: Inventory) -> None:
        """
        Writes a new snapshot atomically and discards the old journal.

        Args:
            source (Inventory): The source inventory.
            destination (Inventory): The destination inventory.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        data: Dict[str, Any] = {
            "timestamp": time.time(),
            "source": [[name, size] for name, size in source.items()],
            "destination": [[name, size] for name, size in destination.items()],
        }
        fd, tmp_name = tempfile.mkstemp(
            dir=self.directory, prefix=".snapshot-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.snapshot_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        # Journal entries are only meaningful relative to the snapshot they follow
        self.journal_path.unlink(missing_ok=True)
        logger.info(
            f"Checkpoint snapshot saved to '{self.snapshot_path}' "
            f"({len(source)} source, {len(destination)} destination objects)."
        )

    def _read_snapshot(self) -> Dict[str, Any]:
        try:
            data: Any = json.loads(self.snapshot_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CheckpointCorruptError(f"Snapshot unreadable: {e}") from e
        if not isinstance(data, dict):
            raise CheckpointCorruptError("Snapshot is not a JSON object.")
        return data

    def _replay_journal(self, destination: Inventory) -> int:
        if not self.journal_path.is_file():
            return 0
        replayed: int = 0
        with self.journal_path.open("r", encoding="utf-8", errors="replace") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.rstrip("\n")
                if not line.strip():
                    continue
                try:
                    entry: JournalEntry = parse_journal_line(line)
                except JournalLineError as e:
                    logger.warning(f"Skipping journal line {line_number}: {e}")
                    continue
                destination[entry.name] = entry.size
                replayed += 1
        return replayed

    def load_snapshot(self) -> Optional[RestoredCheckpoint]:
        """
        Restores both inventories and replays the journal.

        A corrupt snapshot is logged and treated as no checkpoint at all.

        Returns:
            Optional[RestoredCheckpoint]: The restored state, or None if there
                is no usable checkpoint.
        """
        if not self.has_checkpoint():
            return None
        try:
            data: Dict[str, Any] = self._read_snapshot()
            source: Inventory = _decode_inventory(data.get("source"), "source")
            destination: Inventory = _decode_inventory(
                data.get("destination"), "destination"
            )
            timestamp: float = float(data.get("timestamp", 0))
        except (CheckpointCorruptError, TypeError, ValueError) as e:
            logger.error(f"Failed to load checkpoint '{self.snapshot_path}': {e}")
            return None

        replayed: int = self._replay_journal(destination)
        return RestoredCheckpoint(
            source=source,
            destination=destination,
            replayed=replayed,
            timestamp=timestamp,
        )

    def append_journal(self, name: str, size: int) -> None:
        """
        Durably records one completed transfer.

        Args:
            name (str): The object name.
            size (int): The size the source inventory lists for it.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        with self.journal_path.open("a+b") as f:
            f.seek(0, os.SEEK_END)
            if f.tell() > 0:
                f.seek(-1, os.SEEK_END)
                if f.read(1) != b"\n":
                    # Terminate a line torn by a crash mid-write
                    f.write(b"\n")
            f.write(format_journal_line(name, size).encode("utf-8"))
            f.flush()
            os.fsync(f.fileno())

    def journal_length(self) -> int:
        """Counts the non-empty lines in the journal."""
        if not self.journal_path.is_file():
            return 0
        with self.journal_path.open("r", encoding="utf-8", errors="replace") as f:
            return sum(1 for line in f if line.strip())

    def clear(self) -> None:
        """Removes the snapshot and the journal. Safe to call when absent."""
        removed: List[str] = []
        for path in (self.snapshot_path, self.journal_path):
            if path.exists():
                path.unlink()
                removed.append(path.name)
        if removed:
            logger.info(f"Checkpoint cleared ({', '.join(removed)}).")

    def age(self) -> timedelta:
        """
        Time since the snapshot was last written.

        Returns:
            timedelta: The snapshot's age, or zero when there is none.
        """
        try:
            mtime: float = self.snapshot_path.stat().st_mtime
        except FileNotFoundError:
            return timedelta(0)
        return timedelta(seconds=max(0.0, time.time() - mtime))
