"""Label lookups for changes.

The analysis core asks "does change N carry label L?" many times per
change. Those questions are answered from a LabelSnapshot: the labels of
every change in a repository's range, fetched concurrently up front and
stored in the range's original order. The priority fold and the
partitioner then run as plain synchronous code over the snapshot.

Design notes:
- Lookups are idempotent reads, so they may run in any order; each runs
  as a task in an asyncio.TaskGroup and results are read back in input
  order
- The first failed lookup cancels the ones still in flight
- A failed lookup propagates as LookupFailure; it is never treated as
  "no labels"
- The oracle is a Protocol so tests can plug in MockLabelOracle
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from release_announcer.errors import LookupFailure
from release_announcer.logging_config import get_logger
from release_announcer.schemas import ChangeRecord

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class LabelOracleProtocol(Protocol):
    """Answers label questions about changes in a repository."""

    async def labels_for(self, repository: str, change_number: int) -> frozenset[str]:
        """Return every label attached to a change.

        Raises:
            LookupFailure: If the labels could not be fetched
        """
        ...

    async def has_label(self, repository: str, change_number: int, label: str) -> bool:
        """Return whether ``label`` is attached to the change.

        Raises:
            LookupFailure: If the labels could not be fetched
        """
        ...


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


class LabelSnapshot:
    """Immutable view of the labels on a repository's changes.

    Usage:
        snapshot = await collect_labels(oracle, "paritytech/polkadot", changes)
        snapshot.has_label(change, "C7-high")
    """

    def __init__(
        self,
        repository: str,
        labels: Mapping[int, Iterable[str]],
    ) -> None:
        self.repository = repository
        self._labels: dict[int, frozenset[str]] = {
            number: frozenset(names) for number, names in labels.items()
        }

    def has_label(self, change: ChangeRecord, label: str) -> bool:
        """Return whether ``change`` carries ``label``.

        Raises:
            LookupFailure: If the change was never looked up
        """
        try:
            names = self._labels[change.number]
        except KeyError:
            raise LookupFailure(
                self.repository, change.number, "change missing from label snapshot"
            ) from None
        return label in names

    def __len__(self) -> int:
        return len(self._labels)


async def collect_labels(
    oracle: LabelOracleProtocol,
    repository: str,
    changes: Sequence[ChangeRecord],
    concurrency: int = 8,
) -> LabelSnapshot:
    """Fetch the labels of every change concurrently.

    Args:
        oracle: Label source (the forge client in production)
        repository: Repository in "owner/name" format
        changes: Changes in range order
        concurrency: Maximum lookups in flight at once

    Returns:
        A LabelSnapshot covering every change

    Raises:
        LookupFailure: If any lookup fails (the whole snapshot fails)
    """
    semaphore = asyncio.Semaphore(concurrency)

    async def fetch(change: ChangeRecord) -> frozenset[str]:
        async with semaphore:
            return await oracle.labels_for(repository, change.number)

    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(fetch(change)) for change in changes]
    except ExceptionGroup as failures:
        # Lookups still in flight were cancelled; surface the first failure.
        raise failures.exceptions[0] from None
    logger.info(
        "labels_collected",
        repository=repository,
        changes=len(changes),
    )
    return LabelSnapshot(
        repository,
        {change.number: task.result() for change, task in zip(changes, tasks)},
    )


# ---------------------------------------------------------------------------
# Mock Implementation (for testing)
# ---------------------------------------------------------------------------


class MockLabelOracle:
    """Label oracle backed by a dict.

    Usage:
        oracle = MockLabelOracle({"org/repo": {12: {"C7-high"}}})
    """

    def __init__(
        self,
        labels: Mapping[str, Mapping[int, Iterable[str]]] | None = None,
        failing: Iterable[int] = (),
    ) -> None:
        """Initialize with predefined labels.

        Args:
            labels: repository -> change number -> label names
            failing: Change numbers whose lookup raises LookupFailure
        """
        self._labels = labels or {}
        self._failing = set(failing)
        self.calls: list[tuple[str, int]] = []

    async def labels_for(self, repository: str, change_number: int) -> frozenset[str]:
        self.calls.append((repository, change_number))
        if change_number in self._failing:
            raise LookupFailure(repository, change_number, "mock failure")
        return frozenset(self._labels.get(repository, {}).get(change_number, ()))

    async def has_label(self, repository: str, change_number: int, label: str) -> bool:
        return label in await self.labels_for(repository, change_number)
