"""Change log sources and release range discovery.

A change log source turns a ref range of a repository into the ordered
list of merged changes, one release-notes line per change. Two
implementations exist: GitChangeLogSource reads a local clone,
GitHubChangeLogSource uses the forge's compare API.

This module also holds the pure helpers used to work out which ranges to
read:
- previous_release_tag: the release tag preceding the one being released
- dependency_commit: the dependency revision pinned by a lock file
"""

from __future__ import annotations

import re
import tomllib
from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from release_announcer.errors import RangeResolutionFailure
from release_announcer.logging_config import get_logger
from release_announcer.schemas import RELEASE_TAG_RE, ChangeRecord

logger = get_logger(__name__)

_CHANGE_REFERENCE_RE = re.compile(r"\(#[0-9]+\)")
_SUFFIX_PART_RE = re.compile(r"\d+|\D+")

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ChangeLogSourceProtocol(Protocol):
    """Produces the merged changes of a repository between two refs."""

    async def changes_between(
        self, repository: str, from_ref: str, to_ref: str
    ) -> list[ChangeRecord]:
        """Return the changes merged between ``from_ref`` and ``to_ref``.

        Args:
            repository: Repository in "owner/name" format
            from_ref: Older ref (tag or commit)
            to_ref: Newer ref (tag or commit)

        Returns:
            Changes in merge order, newest first as git reports them

        Raises:
            RangeResolutionFailure: If either ref cannot be resolved
        """
        ...


# ---------------------------------------------------------------------------
# Line handling
# ---------------------------------------------------------------------------


def sanitise_subjects(
    subjects: Iterable[str],
    qualify_as: str | None = None,
) -> list[ChangeRecord]:
    """Turn commit subjects into change records.

    Keeps only subjects referencing a change "(#N)", normalizes them to a
    single "* " bullet and, for a dependency repository, qualifies the
    reference as "(owner/repo#N)" so links resolve from the primary
    repository's release page.

    Args:
        subjects: Commit subject lines
        qualify_as: Repository name to qualify change references with

    Returns:
        Change records, in input order
    """
    changes: list[ChangeRecord] = []
    for subject in subjects:
        if not _CHANGE_REFERENCE_RE.search(subject):
            continue
        line = "* " + subject.strip().removeprefix("* ")
        if qualify_as:
            line = line.replace("(#", f"({qualify_as}#")
        change = ChangeRecord.from_line(line)
        if change is None:
            logger.debug("change_line_skipped", line=line)
            continue
        changes.append(change)
    return changes


# ---------------------------------------------------------------------------
# Range discovery
# ---------------------------------------------------------------------------


def _suffix_key(suffix: str) -> tuple[tuple[int, int, str], ...]:
    # Numeric runs compare as numbers, so "-rc10" sorts after "-rc2".
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in _SUFFIX_PART_RE.findall(suffix)
    )


def _release_key(tag: str) -> tuple:
    match = RELEASE_TAG_RE.match(tag)
    if match is None:
        raise ValueError(f"not a release tag: {tag}")
    major, minor, patch, suffix = match.groups()
    # Pre-releases (v1.2.0-rc1) sort before the final release (v1.2.0).
    return int(major), int(minor), int(patch), suffix == "", _suffix_key(suffix)


def previous_release_tag(tags: Iterable[str], current: str) -> str:
    """Find the release tag immediately preceding ``current``.

    Only tags shaped like ``v<major>.<minor>.<patch>`` (with an optional
    suffix such as ``-rc1``) are considered.

    Raises:
        RangeResolutionFailure: If ``current`` is not a known release tag
            or is the oldest one
    """
    releases = sorted(
        {tag for tag in tags if RELEASE_TAG_RE.match(tag)},
        key=_release_key,
    )
    if current not in releases:
        raise RangeResolutionFailure(f"Release tag {current} not found")
    index = releases.index(current)
    if index == 0:
        raise RangeResolutionFailure(f"No release precedes {current}")
    return releases[index - 1]


def dependency_commit(lock_text: str, package: str) -> str:
    """Return the dependency commit pinned for ``package`` in a lock file.

    The package's ``source`` is a git URL whose fragment is the commit,
    e.g. ``git+https://github.com/paritytech/substrate?branch=master#a1b2c3``.

    Raises:
        RangeResolutionFailure: If the lock file is unreadable or does not
            pin ``package`` to a git commit
    """
    try:
        lock = tomllib.loads(lock_text)
    except tomllib.TOMLDecodeError as exc:
        raise RangeResolutionFailure(f"Unreadable lock file: {exc}") from exc

    packages: Sequence[Mapping] = lock.get("package", [])
    for entry in packages:
        if entry.get("name") != package:
            continue
        source = entry.get("source", "")
        if "#" not in source:
            raise RangeResolutionFailure(f"{package} is not pinned to a git commit")
        return source.rsplit("#", 1)[1]
    raise RangeResolutionFailure(f"{package} not found in lock file")


# ---------------------------------------------------------------------------
# Mock Implementation (for testing)
# ---------------------------------------------------------------------------


class StaticChangeLogSource:
    """Change log source returning predefined lines.

    Usage:
        source = StaticChangeLogSource({("org/repo", "v1", "v2"): ["* Fix (#1)"]})
    """

    def __init__(
        self,
        ranges: Mapping[tuple[str, str, str], Sequence[str]] | None = None,
        qualify_as: str | None = None,
    ) -> None:
        self._ranges = ranges or {}
        self._qualify_as = qualify_as

    async def changes_between(
        self, repository: str, from_ref: str, to_ref: str
    ) -> list[ChangeRecord]:
        try:
            lines = self._ranges[(repository, from_ref, to_ref)]
        except KeyError:
            raise RangeResolutionFailure(
                f"Unknown range {from_ref}...{to_ref} for {repository}"
            ) from None
        return sanitise_subjects(lines, self._qualify_as)
