# src/bucketsync/planner.py
"""
Reconciliation of a source inventory against a destination inventory.

Byte size is the only equality signal. Two different objects of the same
length are indistinguishable from an object that is already synced.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Set

from bucketsync.inventory import Inventory


class CopyReason(Enum):
    """Why an object was scheduled for copy. Used for reporting only."""

    MISSING = "missing"
    CHANGED = "changed"


@dataclass(frozen=True)
class PlanEntry:
    """An object to copy, with the size the source reported."""

    name: str
    size: int
    reason: CopyReason = CopyReason.MISSING


@dataclass
class ReconciliationPlan:
    """
    The outcome of comparing two inventories.

    Attributes:
        copy_set (List[PlanEntry]): Objects to transfer, in source order.
        skipped (List[str]): Objects the destination already holds at the same size.
        extra (Set[str]): Destination-only names. Reported, never deleted.
    """

    copy_set: List[PlanEntry] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    extra: Set[str] = field(default_factory=set)

    @property
    def missing(self) -> List[PlanEntry]:
        return [e for e in self.copy_set if e.reason is CopyReason.MISSING]

    @property
    def changed(self) -> List[PlanEntry]:
        return [e for e in self.copy_set if e.reason is CopyReason.CHANGED]


def plan(source: Inventory, destination: Inventory) -> ReconciliationPlan:
    """
    Classifies every source object as copy or skip.

    Args:
        source (Inventory): The source inventory.
        destination (Inventory): The destination inventory.

    Returns:
        ReconciliationPlan: The copy-set, the skipped names and the extras.
    """
    result: ReconciliationPlan = ReconciliationPlan()
    for name, size in source.items():
        if name not in destination:
            result.copy_set.append(PlanEntry(name, size, CopyReason.MISSING))
        elif destination[name] != size:
            result.copy_set.append(PlanEntry(name, size, CopyReason.CHANGED))
        else:
            result.skipped.append(name)
    result.extra = set(destination) - set(source)
    return result
