"""Release body composition.

Merges the analyses of the primary and dependency repositories into the
final release notes text:

    <priority banner>

    <preamble>

    <primary general changes>

    ## Runtime
    <primary runtime changes>

    # <Dependency> changes

    ## Runtime
    ## Client
    ## API

Empty sections are omitted. The dependency heading appears only when at
least one dependency section has changes.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from release_announcer.partition import CATEGORY_ORDER
from release_announcer.schemas import (
    Category,
    ChangeRecord,
    PriorityLevel,
    RepositoryAnalysis,
)

SECTION_TITLES: dict[Category, str] = {
    Category.RUNTIME: "Runtime",
    Category.CLIENT: "Client",
    Category.API: "API",
}


@dataclass(frozen=True)
class Composition:
    """Composed release notes."""

    overall_priority: PriorityLevel
    banner: str
    body: str


def _section(title: str, changes: tuple[ChangeRecord, ...]) -> str:
    return "\n".join([f"## {title}", *(change.raw_text for change in changes)])


def compose_banner(
    primary: RepositoryAnalysis,
    dependency: RepositoryAnalysis,
    descriptions: Mapping[PriorityLevel, str],
) -> tuple[PriorityLevel, str]:
    """Build the priority banner shown at the top of the notes.

    A LOW release gets the bare description. Anything higher cites the
    justifying changes, primary first, dependency ids qualified with the
    dependency repository name.
    """
    overall = max(primary.final_priority, dependency.final_priority)
    description = descriptions[overall]
    if overall == PriorityLevel.LOW:
        return overall, description

    change_ids = [
        *primary.justifying_change_ids,
        *(f"{dependency.repository}{change_id}" for change_id in dependency.justifying_change_ids),
    ]
    return overall, f"{description} - due to change(s): {' '.join(change_ids)}"


def compose_body(
    primary: RepositoryAnalysis,
    dependency: RepositoryAnalysis,
    dependency_display_name: str,
    preamble: str = "",
) -> str:
    """Build the release notes body (everything below the banner)."""
    blocks: list[str] = []
    if preamble:
        blocks.append(preamble.strip("\n"))

    if primary.general_changes:
        blocks.append("\n".join(change.raw_text for change in primary.general_changes))

    primary_runtime = primary.changes_in(Category.RUNTIME)
    if primary_runtime:
        blocks.append(_section(SECTION_TITLES[Category.RUNTIME], primary_runtime))

    dependency_sections = [
        _section(SECTION_TITLES[category], dependency.changes_in(category))
        for category in CATEGORY_ORDER
        if dependency.changes_in(category)
    ]
    if dependency_sections:
        blocks.append(f"# {dependency_display_name} changes")
        blocks.extend(dependency_sections)

    return "\n\n".join(blocks)


def compose(
    primary: RepositoryAnalysis,
    dependency: RepositoryAnalysis,
    descriptions: Mapping[PriorityLevel, str],
    dependency_display_name: str,
    preamble: str = "",
) -> Composition:
    """Compose the full release notes from both repository analyses.

    Args:
        primary: Analysis of the primary repository
        dependency: Analysis of the dependency repository
        descriptions: Priority level -> banner description
        dependency_display_name: Name used in the dependency heading
        preamble: Optional text placed above the change list

    Returns:
        The overall priority, the banner, and the full text (banner, blank
        line, body)
    """
    overall, banner = compose_banner(primary, dependency, descriptions)
    body = compose_body(primary, dependency, dependency_display_name, preamble)
    return Composition(
        overall_priority=overall,
        banner=banner,
        body=f"{banner}\n\n{body}",
    )
