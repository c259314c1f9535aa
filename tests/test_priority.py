"""Tests for priority resolution.

Priority resolution is a pure fold over a label snapshot, so these tests
build snapshots directly and need no mocking.

Run with: pytest tests/test_priority.py -v
"""

from __future__ import annotations

import pytest

from release_announcer.config import DEFAULT_PRIORITY_LABELS
from release_announcer.context.labels import LabelSnapshot
from release_announcer.errors import LookupFailure
from release_announcer.priority import (
    PriorityState,
    levels_to_scan,
    resolve_priority,
    step,
)
from release_announcer.schemas import ChangeRecord, PriorityLevel

REPO = "paritytech/polkadot"

LOW = DEFAULT_PRIORITY_LABELS[PriorityLevel.LOW]
MEDIUM = DEFAULT_PRIORITY_LABELS[PriorityLevel.MEDIUM]
HIGH = DEFAULT_PRIORITY_LABELS[PriorityLevel.HIGH]
CRITICAL = DEFAULT_PRIORITY_LABELS[PriorityLevel.CRITICAL]


def change(number: int) -> ChangeRecord:
    return ChangeRecord(raw_text=f"* Change {number} (#{number})", number=number)


def resolve(labels: dict[int, set[str]], order: list[int] | None = None):
    numbers = order or list(labels)
    return resolve_priority(
        [change(n) for n in numbers],
        LabelSnapshot(REPO, labels),
        DEFAULT_PRIORITY_LABELS,
    )


class RecordingSnapshot(LabelSnapshot):
    """Snapshot that records every (change, label) question asked."""

    def __init__(self, repository, labels) -> None:
        super().__init__(repository, labels)
        self.queries: list[tuple[int, str]] = []

    def has_label(self, change, label):
        self.queries.append((change.number, label))
        return super().has_label(change, label)


# ---------------------------------------------------------------------------
# Baseline
# ---------------------------------------------------------------------------


class TestNoPriorityLabels:
    def test_empty_sequence_is_low(self) -> None:
        result = resolve({})
        assert result.final_priority == PriorityLevel.LOW
        assert result.justifying_change_ids == ()

    def test_unlabelled_changes_are_low_with_no_justification(self) -> None:
        result = resolve({1: set(), 2: {"B0-silent"}, 3: {"B2-runtimenoteworthy"}})
        assert result.final_priority == PriorityLevel.LOW
        assert result.justifying_change_ids == ()

    def test_explicit_low_labels_accumulate(self) -> None:
        result = resolve({1: {LOW}, 2: set(), 3: {LOW}})
        assert result.final_priority == PriorityLevel.LOW
        assert result.justifying_change_ids == ("#1", "#3")


# ---------------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------------


class TestEscalation:
    def test_later_lower_label_is_ignored(self) -> None:
        """A(#1, none), B(#2, high), C(#3, medium) -> (high, [#2])."""
        result = resolve({1: set(), 2: {HIGH}, 3: {MEDIUM}})
        assert result.final_priority == PriorityLevel.HIGH
        assert result.justifying_change_ids == ("#2",)

    def test_same_level_changes_accumulate(self) -> None:
        """A(#1, medium), B(#2, medium) -> (medium, [#1, #2])."""
        result = resolve({1: {MEDIUM}, 2: {MEDIUM}})
        assert result.final_priority == PriorityLevel.MEDIUM
        assert result.justifying_change_ids == ("#1", "#2")

    def test_escalation_resets_justification(self) -> None:
        result = resolve({1: {MEDIUM}, 2: {MEDIUM}, 3: {HIGH}, 4: {HIGH}})
        assert result.final_priority == PriorityLevel.HIGH
        assert result.justifying_change_ids == ("#3", "#4")

    def test_low_then_critical(self) -> None:
        result = resolve({1: {LOW}, 2: {CRITICAL}, 3: {LOW}})
        assert result.final_priority == PriorityLevel.CRITICAL
        assert result.justifying_change_ids == ("#2",)

    def test_highest_label_on_a_change_wins(self) -> None:
        result = resolve({1: {MEDIUM}, 2: {MEDIUM, HIGH}})
        assert result.final_priority == PriorityLevel.HIGH
        assert result.justifying_change_ids == ("#2",)

    def test_multiple_labels_on_first_change(self) -> None:
        result = resolve({1: {LOW, MEDIUM}, 2: {MEDIUM}})
        assert result.final_priority == PriorityLevel.MEDIUM
        assert result.justifying_change_ids == ("#1", "#2")


# ---------------------------------------------------------------------------
# Scan-from-cursor rule
# ---------------------------------------------------------------------------


class TestScanFromCursor:
    def test_levels_to_scan_before_any_label(self) -> None:
        assert levels_to_scan(None) == PriorityLevel.ascending()

    def test_levels_to_scan_from_cursor(self) -> None:
        assert levels_to_scan(PriorityLevel.HIGH) == [
            PriorityLevel.HIGH,
            PriorityLevel.CRITICAL,
        ]

    def test_lower_labels_are_never_queried_after_escalation(self) -> None:
        snapshot = RecordingSnapshot(REPO, {1: {HIGH}, 2: {LOW, MEDIUM}})
        resolve_priority([change(1), change(2)], snapshot, DEFAULT_PRIORITY_LABELS)

        asked_of_second = [label for number, label in snapshot.queries if number == 2]
        assert asked_of_second == [HIGH, CRITICAL]

    def test_unlabelled_change_leaves_state_untouched(self) -> None:
        state = PriorityState(PriorityLevel.MEDIUM, ("#1",))
        snapshot = LabelSnapshot(REPO, {2: set()})
        assert step(state, change(2), snapshot, DEFAULT_PRIORITY_LABELS) is state


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestProperties:
    LABELS = {1: {MEDIUM}, 2: {HIGH}, 3: set(), 4: {HIGH}, 5: {LOW}}

    def test_resolution_is_idempotent(self) -> None:
        assert resolve(self.LABELS) == resolve(self.LABELS)

    def test_final_priority_is_order_independent(self) -> None:
        forward = resolve(self.LABELS, [1, 2, 3, 4, 5])
        backward = resolve(self.LABELS, [5, 4, 3, 2, 1])
        assert forward.final_priority == backward.final_priority == PriorityLevel.HIGH

    def test_justification_is_order_sensitive(self) -> None:
        forward = resolve(self.LABELS, [1, 2, 3, 4, 5])
        backward = resolve(self.LABELS, [5, 4, 3, 2, 1])
        assert forward.justifying_change_ids == ("#2", "#4")
        assert backward.justifying_change_ids == ("#4", "#2")

    @pytest.mark.parametrize("prefix_length", [1, 2, 3, 4, 5])
    def test_priority_never_decreases_as_changes_are_added(self, prefix_length) -> None:
        order = [1, 2, 3, 4, 5]
        shorter = resolve(self.LABELS, order[: prefix_length - 1] or [3])
        longer = resolve(self.LABELS, order[:prefix_length])
        assert longer.final_priority >= shorter.final_priority

    def test_change_missing_from_snapshot_raises(self) -> None:
        with pytest.raises(LookupFailure):
            resolve_priority([change(9)], LabelSnapshot(REPO, {}), DEFAULT_PRIORITY_LABELS)
