"""Category partitioning of a repository's changes.

Each change is routed into the release-notes sections its labels ask for.
The two repositories follow different rule sets:

- Primary repository: only the runtime-noteworthy label is recognized.
  Runtime changes go to the "Runtime" section, every other non-silent
  change goes to the general list at the top of the notes.
- Dependency repository: runtime, client and API labels are recognized
  and a change joins every section it is labelled for. There is no
  general list; unlabelled dependency changes are left out of the notes.

A change carrying the silent label is dropped from every section in both
rule sets. Silencing does not affect priority resolution, which sees the
full change list.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from release_announcer.config import LabelConfig
from release_announcer.context.labels import LabelSnapshot
from release_announcer.logging_config import get_logger
from release_announcer.schemas import Category, ChangeRecord

logger = get_logger(__name__)

# Fixed order in which noteworthy categories are checked and rendered.
CATEGORY_ORDER: tuple[Category, ...] = (Category.RUNTIME, Category.CLIENT, Category.API)


@dataclass(frozen=True)
class RuleSet:
    """Which labels route changes into which sections.

    Attributes:
        silent_label: Label that removes a change from the notes entirely
        categories: Noteworthy category -> label name, in check order
        collects_general: Whether uncategorized changes form a general list
    """

    silent_label: str
    categories: tuple[tuple[Category, str], ...]
    collects_general: bool

    @classmethod
    def primary(cls, labels: LabelConfig) -> RuleSet:
        return cls(
            silent_label=labels.silent,
            categories=((Category.RUNTIME, labels.primary_runtime),),
            collects_general=True,
        )

    @classmethod
    def dependency(cls, labels: LabelConfig) -> RuleSet:
        return cls(
            silent_label=labels.silent,
            categories=(
                (Category.RUNTIME, labels.dependency_runtime),
                (Category.CLIENT, labels.dependency_client),
                (Category.API, labels.dependency_api),
            ),
            collects_general=False,
        )


@dataclass(frozen=True)
class Partition:
    """Changes split into release-notes sections."""

    categorized: dict[Category, tuple[ChangeRecord, ...]] = field(default_factory=dict)
    general: tuple[ChangeRecord, ...] = ()
    silenced: tuple[ChangeRecord, ...] = ()


def partition_changes(
    changes: Sequence[ChangeRecord],
    labels: LabelSnapshot,
    rule_set: RuleSet,
) -> Partition:
    """Split changes into noteworthy sections and the general list.

    Args:
        changes: Changes in merge order
        labels: Label snapshot covering every change
        rule_set: Primary or dependency rules

    Returns:
        A Partition; section order within each bucket follows ``changes``

    Raises:
        LookupFailure: If a change is missing from the snapshot
    """
    buckets: dict[Category, list[ChangeRecord]] = {
        category: [] for category, _ in rule_set.categories
    }
    general: list[ChangeRecord] = []
    silenced: list[ChangeRecord] = []

    for change in changes:
        if labels.has_label(change, rule_set.silent_label):
            silenced.append(change)
            continue

        matched = False
        for category, label in rule_set.categories:
            if labels.has_label(change, label):
                buckets[category].append(change)
                matched = True

        if not matched and rule_set.collects_general:
            general.append(change)

    logger.debug(
        "changes_partitioned",
        repository=labels.repository,
        silenced=len(silenced),
        general=len(general),
        **{category.name.lower(): len(items) for category, items in buckets.items()},
    )
    return Partition(
        categorized={category: tuple(items) for category, items in buckets.items() if items},
        general=tuple(general),
        silenced=tuple(silenced),
    )


def exclude_prefixed(
    changes: Iterable[ChangeRecord],
    prefixes: Sequence[str],
) -> list[ChangeRecord]:
    """Drop changes whose description starts with an excluded prefix.

    Used for the primary repository to leave out subsystems that are
    released separately (e.g. "[contracts] ..." or "contracts: ...").
    """
    if not prefixes:
        return list(changes)
    prefixes = tuple(prefixes)
    return [change for change in changes if not change.description.startswith(prefixes)]
