# src/bucketsync/__init__.py
"""
bucketsync: A resumable, size-reconciling bucket-to-bucket replicator.

This package mirrors objects from a source S3-compatible bucket into a
destination bucket. It copies only what is missing or differs in size,
streams bytes without buffering whole objects, and checkpoints its progress
so an interrupted run resumes where it stopped.

The primary entry point for programmatic use is the `SyncPipeline` class.
"""

from typing import List

from bucketsync.checkpoint import CheckpointStore
from bucketsync.pipeline import SyncPipeline, SyncSummary, VerifyReport
from bucketsync.planner import ReconciliationPlan, plan
from bucketsync.transfer import TransferExecutor

__all__: List[str] = [
    "CheckpointStore",
    "ReconciliationPlan",
    "SyncPipeline",
    "SyncSummary",
    "TransferExecutor",
    "VerifyReport",
    "plan",
]
