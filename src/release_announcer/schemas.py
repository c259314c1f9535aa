"""Pydantic models shared by every stage of the release announcer.

These schemas are the contract between the context collaborators (git,
GitHub), the analysis core (priority resolution, partitioning) and the
publishing layer. They are also reused as request/response bodies by the
preview API.

Key design decisions:
- All models describing a release run are frozen; a run never mutates
  what an earlier stage produced
- Enums constrain priority levels and categories so label names can live
  in configuration without leaking into the algorithm
- Change ordering is carried by tuples, never by sets
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Trailing "(#1234)" or "(owner/repo#1234)" on a change line.
_CHANGE_REF_RE = re.compile(r"#(\d+)\)\s*$")

# Release tags: v<major>.<minor>.<patch> with an optional suffix such as "-rc2".
RELEASE_TAG_RE = re.compile(r"^v(\d+)\.(\d+)\.(\d+)([0-9A-Za-z.+-]*)$")

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PriorityLevel(str, Enum):
    """Upgrade urgency of a release, ordered from lowest to highest.

    LOW: Upgrade at your convenience
    MEDIUM: Timely upgrade recommended
    HIGH: Upgrade as soon as possible
    CRITICAL: Upgrade immediately

    Comparison follows declaration order, not the string values, so
    ``max()`` over levels returns the most urgent one.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position of this level in the urgency order (LOW == 0)."""
        return list(type(self)).index(self)

    @classmethod
    def ascending(cls) -> list[PriorityLevel]:
        """All levels from lowest to highest urgency."""
        return list(cls)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, PriorityLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, PriorityLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, PriorityLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, PriorityLevel):
            return NotImplemented
        return self.rank >= other.rank


class Category(str, Enum):
    """Audience-facing classification of a change.

    SILENT removes a change from every section of the release notes.
    The noteworthy categories route a change into a dedicated section.
    """

    SILENT = "silent"
    RUNTIME = "runtime-noteworthy"
    CLIENT = "client-noteworthy"
    API = "api-noteworthy"


# ---------------------------------------------------------------------------
# Change records
# ---------------------------------------------------------------------------


class ChangeRecord(BaseModel):
    """One merged change, as a single line of release-notes text.

    Attributes:
        raw_text: The full line, e.g. "* Fix block import (#1234)"
        number: The numeric change id referenced at the end of the line
    """

    model_config = ConfigDict(frozen=True)

    raw_text: str = Field(..., min_length=1, description="Change line as rendered")
    number: int = Field(..., gt=0, description="Change (pull request) number")

    @property
    def id(self) -> str:
        """The change reference as it appears in a priority banner."""
        return f"#{self.number}"

    @property
    def description(self) -> str:
        """The line without its leading bullet marker."""
        return self.raw_text.removeprefix("* ")

    @classmethod
    def from_line(cls, line: str) -> ChangeRecord | None:
        """Build a record from a change line.

        Returns None when the line does not end with a parenthesized
        change reference.
        """
        text = line.rstrip()
        match = _CHANGE_REF_RE.search(text)
        if match is None:
            return None
        return cls(raw_text=text, number=int(match.group(1)))


# ---------------------------------------------------------------------------
# Analysis output
# ---------------------------------------------------------------------------


class RepositoryAnalysis(BaseModel):
    """Priority and category breakdown of one repository's changes.

    Attributes:
        repository: Repository in "owner/name" format
        final_priority: Highest priority level found on any change
        justifying_change_ids: Changes that caused the most recent escalation
            to final_priority, in change order
        categorized_changes: Noteworthy category -> changes in that section
        general_changes: Changes with no noteworthy category (primary
            repository only; always empty for the dependency repository)
    """

    model_config = ConfigDict(frozen=True)

    repository: str
    final_priority: PriorityLevel = PriorityLevel.LOW
    justifying_change_ids: tuple[str, ...] = ()
    categorized_changes: dict[Category, tuple[ChangeRecord, ...]] = Field(
        default_factory=dict
    )
    general_changes: tuple[ChangeRecord, ...] = ()

    def changes_in(self, category: Category) -> tuple[ChangeRecord, ...]:
        """Changes routed to ``category`` (empty when none)."""
        return self.categorized_changes.get(category, ())


# ---------------------------------------------------------------------------
# Release output
# ---------------------------------------------------------------------------


class AnnouncementRequest(BaseModel):
    """Request to prepare release notes for a tagged version."""

    version: str = Field(..., min_length=1, description="Tag being released, e.g. v0.9.1")
    previous_version: str | None = Field(
        None, description="Tag of the previous release (discovered from tags if omitted)"
    )

    @field_validator("version", "previous_version")
    @classmethod
    def validate_release_tag(cls, v: str | None) -> str | None:
        """Only release tags are accepted; they are passed on to git."""
        if v is not None and not RELEASE_TAG_RE.match(v):
            raise ValueError(f"not a release tag (expected e.g. v0.9.1 or v0.9.1-rc2): {v!r}")
        return v


class ReleaseAnnouncement(BaseModel):
    """Composed release notes, ready to publish.

    Attributes:
        version: Tag being released
        title: Release title shown on the forge
        overall_priority: Highest priority across both repositories
        banner: First line of the release notes (upgrade priority)
        body: Full release notes text, banner included
    """

    model_config = ConfigDict(frozen=True)

    version: str
    title: str
    overall_priority: PriorityLevel
    banner: str
    body: str


class PublishedRelease(BaseModel):
    """Draft release created on the forge."""

    html_url: str
    tag_name: str
    draft: bool = True
