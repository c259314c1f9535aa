"""Priority resolution for a repository's changes.

The upgrade priority of a release is the highest priority label found on
any of its changes. Alongside it, the release notes cite the changes that
*justify* that priority: the ones labelled at the final level since the
last escalation.

The resolution is a fold over the changes in merge order. The state is a
cursor (the highest level seen so far, initially none) and the list of
justifying change ids:

- For each change, only levels at or above the cursor are checked; lower
  labels on later changes are never looked at.
- If the highest level found on the change is above the cursor, the
  justification list restarts with this change and the cursor advances.
- If it equals the cursor, the change is appended to the list.
- Changes without any priority label leave the state untouched.

Skipping levels below the cursor decides which changes end up in the
justification list; it must not be replaced with a full scan.

Example:
    A (#1, no label), B (#2, high), C (#3, medium)  ->  (HIGH, ["#2"])
    A (#1, medium),   B (#2, medium)                ->  (MEDIUM, ["#1", "#2"])
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from functools import partial, reduce

from release_announcer.context.labels import LabelSnapshot
from release_announcer.logging_config import get_logger
from release_announcer.schemas import ChangeRecord, PriorityLevel

logger = get_logger(__name__)


@dataclass(frozen=True)
class PriorityState:
    """Accumulator threaded through the priority fold.

    Attributes:
        cursor: Highest level found so far (None before any label is seen)
        change_ids: Changes justifying ``cursor``, in change order
    """

    cursor: PriorityLevel | None = None
    change_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class PriorityResolution:
    """Final priority of a repository and the changes that justify it."""

    final_priority: PriorityLevel
    justifying_change_ids: tuple[str, ...]


def levels_to_scan(cursor: PriorityLevel | None) -> list[PriorityLevel]:
    """Levels checked for a change given the current cursor."""
    levels = PriorityLevel.ascending()
    if cursor is None:
        return levels
    return levels[cursor.rank:]


def step(
    state: PriorityState,
    change: ChangeRecord,
    labels: LabelSnapshot,
    priority_labels: Mapping[PriorityLevel, str],
) -> PriorityState:
    """Advance the fold by one change."""
    found = [
        level
        for level in levels_to_scan(state.cursor)
        if labels.has_label(change, priority_labels[level])
    ]
    if not found:
        return state

    highest = found[-1]
    if state.cursor is not None and highest == state.cursor:
        return PriorityState(state.cursor, (*state.change_ids, change.id))

    logger.debug(
        "priority_escalated",
        repository=labels.repository,
        change=change.id,
        previous=state.cursor.value if state.cursor else None,
        level=highest.value,
    )
    return PriorityState(highest, (change.id,))


def resolve_priority(
    changes: Sequence[ChangeRecord],
    labels: LabelSnapshot,
    priority_labels: Mapping[PriorityLevel, str],
) -> PriorityResolution:
    """Resolve the upgrade priority of a sequence of changes.

    Args:
        changes: Changes in merge order (silenced changes included)
        labels: Label snapshot covering every change
        priority_labels: Priority level -> label name

    Returns:
        The final level (LOW when no change is labelled) and the ids of the
        changes that justify it

    Raises:
        LookupFailure: If a change is missing from the snapshot
    """
    final = reduce(
        partial(step, labels=labels, priority_labels=priority_labels),
        changes,
        PriorityState(),
    )
    return PriorityResolution(
        final_priority=final.cursor if final.cursor is not None else PriorityLevel.LOW,
        justifying_change_ids=final.change_ids,
    )
