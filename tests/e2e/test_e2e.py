# tests/e2e/test_e2e.py
"""
End-to-end tests for the bucketsync command line.

Each test invokes the real click commands with the S3 clients swapped for
in-memory stores, so the whole path from argument parsing through signal
handling, progress rendering, checkpointing and logging is exercised.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, List, Tuple

import pytest
from click.testing import CliRunner, Result

from bucketsync import cli as cli_module
from bucketsync.checkpoint import CheckpointStore
from bucketsync.cli import cli
from bucketsync.config import Config

if TYPE_CHECKING:
    from conftest import MemoryObjectStore


class CliHarness:
    """Runs the CLI against in-memory stores with a temporary checkpoint."""

    def __init__(self, checkpoint_dir: Path) -> None:
        self.checkpoint_dir: Path = checkpoint_dir
        self.checkpoint: CheckpointStore = CheckpointStore(checkpoint_dir)
        self.opened: List[Config] = []

    def __call__(self, *args: str) -> Result:
        return CliRunner().invoke(
            cli, ["--checkpoint-dir", str(self.checkpoint_dir), *args]
        )


@pytest.fixture
def run_cli(
    source_store: "MemoryObjectStore",
    dest_store: "MemoryObjectStore",
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> CliHarness:
    """
    Provide a harness invoking the CLI against the in-memory stores.

    Args:
        source_store (MemoryObjectStore): The source store fixture.
        dest_store (MemoryObjectStore): The destination store fixture.
        tmp_path (Path): Pytest fixture for a temporary directory.
        monkeypatch (pytest.MonkeyPatch): Used to replace the S3 clients.
        caplog (pytest.LogCaptureFixture): Raised to INFO for every run.

    Returns:
        CliHarness: Runs `bucketsync --checkpoint-dir <tmp> *args`.
    """
    caplog.set_level(logging.INFO)
    for prefix in ["BUCKETSYNC_SOURCE", "BUCKETSYNC_DESTINATION"]:
        monkeypatch.setenv(f"{prefix}_ACCESS_KEY_ID", "key")
        monkeypatch.setenv(f"{prefix}_SECRET_ACCESS_KEY", "secret")
        monkeypatch.setenv(f"{prefix}_BUCKET", prefix.lower())
    monkeypatch.setattr(cli_module, "load_dotenv", lambda: None)
    harness: CliHarness = CliHarness(tmp_path / ".sync")

    @asynccontextmanager
    async def fake_open_stores(
        config: Config,
    ) -> AsyncIterator[Tuple["MemoryObjectStore", "MemoryObjectStore"]]:
        harness.opened.append(config)
        yield source_store, dest_store

    monkeypatch.setattr(cli_module, "open_stores", fake_open_stores)
    return harness


def test_sync_command_mirrors_source(
    run_cli: CliHarness,
    source_store: "MemoryObjectStore",
    dest_store: "MemoryObjectStore",
    caplog: pytest.LogCaptureFixture,
) -> None:
    """
    Tests a complete sync through the CLI.

    Arrange:
        - 25 source objects, two of which already exist in the destination
          (one at the same size, one at a different size).
    Act:
        - Run `bucketsync sync`.
    Assert:
        - The destination matches the source, 24 objects were copied and
          the checkpoint directory was cleaned up.
    """
    # ARRANGE
    source_store.fill({f"images/{i:03d}.jpg": 10 + i for i in range(25)})
    dest_store.fill({"images/000.jpg": 10, "images/001.jpg": 3})

    # ACT
    result: Result = run_cli("sync")

    # ASSERT
    assert result.exit_code == 0, result.output
    assert dest_store.sizes() == source_store.sizes()
    assert len(dest_store.put_calls) == 24
    assert "Synced: 24" in caplog.text
    assert "Skipped: 1" in caplog.text
    assert run_cli.checkpoint.has_checkpoint() is False
    assert run_cli.opened[0].source.bucket == "bucketsync_source"


def test_sync_command_is_idempotent(
    run_cli: CliHarness,
    source_store: "MemoryObjectStore",
    dest_store: "MemoryObjectStore",
) -> None:
    """
    Tests that a second sync performs no transfers.
    """
    source_store.fill({f"k{i}": i for i in range(6)})

    first: Result = run_cli("sync")
    puts_after_first: int = len(dest_store.put_calls)
    second: Result = run_cli("sync")

    assert first.exit_code == 0
    assert second.exit_code == 0
    assert puts_after_first == 6
    assert len(dest_store.put_calls) == 6


def test_failed_sync_resumes_on_rerun(
    run_cli: CliHarness,
    source_store: "MemoryObjectStore",
    dest_store: "MemoryObjectStore",
    caplog: pytest.LogCaptureFixture,
) -> None:
    """
    Tests the resume path across two CLI invocations.

    Arrange:
        - Five objects; the destination refuses one during the first run.
    Act:
        - Run `sync`, fix the destination, run `sync` again.
    Assert:
        - The first run keeps the checkpoint.
        - The second run resumes without listing and copies only the failed
          object.
    """
    source_store.fill({f"obj-{i}": i + 1 for i in range(5)})
    dest_store.fail_puts.add("obj-2")

    first: Result = run_cli("sync")
    assert first.exit_code == 0
    assert run_cli.checkpoint.has_checkpoint() is True
    assert "Checkpoint preserved. Rerun to resume." in caplog.text

    dest_store.fail_puts.clear()
    list_calls: int = source_store.list_calls
    second: Result = run_cli("sync")

    assert second.exit_code == 0
    assert source_store.list_calls == list_calls
    assert "Restored 4 completed objects from journal." in caplog.text
    assert dest_store.put_calls[-1] == "obj-2"
    assert dest_store.sizes() == source_store.sizes()
    assert run_cli.checkpoint.has_checkpoint() is False


def test_single_object_sync_command(
    run_cli: CliHarness,
    source_store: "MemoryObjectStore",
    dest_store: "MemoryObjectStore",
    caplog: pytest.LogCaptureFixture,
) -> None:
    """
    Tests `sync NAME`: only the named object is considered.
    """
    source_store.fill({"wanted": 7, "other": 9})

    copied: Result = run_cli("sync", "wanted")
    skipped: Result = run_cli("sync", "wanted")

    assert copied.exit_code == 0
    assert skipped.exit_code == 0
    assert dest_store.put_calls == ["wanted"]
    assert "Skipped: wanted (already up to date)" in caplog.text
    assert run_cli.checkpoint.has_checkpoint() is False


def test_verify_command_reports_differences(
    run_cli: CliHarness,
    source_store: "MemoryObjectStore",
    dest_store: "MemoryObjectStore",
    caplog: pytest.LogCaptureFixture,
) -> None:
    """
    Tests that `verify` logs differences and copies nothing.
    """
    source_store.fill({"same": 1, "absent": 2, "resized": 3})
    dest_store.fill({"same": 1, "resized": 5, "stray": 1})

    result: Result = run_cli("verify")

    assert result.exit_code == 0
    assert dest_store.put_calls == []
    assert "Verification failed." in caplog.text
    assert "absent" in caplog.text
    assert "resized (source: 3, destination: 5)" in caplog.text
    assert "Extra in 'memory://destination' (1):" in caplog.text


def test_all_command_syncs_then_verifies(
    run_cli: CliHarness,
    source_store: "MemoryObjectStore",
    dest_store: "MemoryObjectStore",
    caplog: pytest.LogCaptureFixture,
) -> None:
    """
    Tests that `all` leaves the stores matching and verification passing.
    """
    source_store.fill({f"f{i}": i * 3 for i in range(8)})

    result: Result = run_cli("all")

    assert result.exit_code == 0
    assert dest_store.sizes() == source_store.sizes()
    assert "Verification passed" in caplog.text


def test_copyback_command(
    run_cli: CliHarness,
    source_store: "MemoryObjectStore",
    dest_store: "MemoryObjectStore",
    caplog: pytest.LogCaptureFixture,
) -> None:
    """
    Tests `copyback NAME` for a present and an absent object.
    """
    dest_store.fill({"backup.bin": 12})

    ok: Result = run_cli("copyback", "backup.bin")
    missing: Result = run_cli("copyback", "nope.bin")

    assert ok.exit_code == 0
    assert source_store.objects["backup.bin"] == dest_store.objects["backup.bin"]
    assert "Successfully copied 'backup.bin' back to the source." in caplog.text
    assert missing.exit_code == 1
    assert "Object 'nope.bin' not found in 'memory://destination'" in caplog.text
