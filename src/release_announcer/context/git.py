"""Local git access for a release run.

Reads tags, files at a ref and commit subjects from a git working tree.
Every failure is reported as RangeResolutionFailure: at this stage a
failing git command means a ref or path could not be resolved.

Usage:
    repo = GitRepository(Path("."))
    previous = previous_release_tag(await repo.tags(), "v0.9.2")
    source = GitChangeLogSource(repo)
    changes = await source.changes_between("paritytech/polkadot", previous, "v0.9.2")
"""

from __future__ import annotations

import asyncio
import subprocess
from pathlib import Path

from release_announcer.context.changes import sanitise_subjects
from release_announcer.errors import RangeResolutionFailure
from release_announcer.logging_config import get_logger
from release_announcer.schemas import ChangeRecord

logger = get_logger(__name__)

_GIT_TIMEOUT_SECONDS = 60.0


def _check_ref(ref: str) -> None:
    # Refs reach git as positional arguments and must never parse as options.
    if not ref or ref.startswith("-"):
        raise RangeResolutionFailure(f"Invalid git ref: {ref!r}")


class GitRepository:
    """A git working tree on disk."""

    def __init__(self, path: Path, *, timeout: float = _GIT_TIMEOUT_SECONDS) -> None:
        self.path = path
        self._timeout = timeout

    def _run(self, *args: str) -> str:
        cmd = ["git", "--no-pager", *args]
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(self.path),
                capture_output=True,
                text=True,
                check=False,
                timeout=self._timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise RangeResolutionFailure(f"git {args[0]} failed in {self.path}: {exc}") from exc
        if proc.returncode != 0:
            raise RangeResolutionFailure(
                f"git {' '.join(args)} failed (exit {proc.returncode}): {proc.stderr.strip()}"
            )
        return proc.stdout

    async def run(self, *args: str) -> str:
        """Run a git command off the event loop and return its stdout."""
        return await asyncio.to_thread(self._run, *args)

    async def tags(self) -> list[str]:
        output = await self.run("tag", "--list")
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def show(self, ref: str, path: str) -> str:
        """Return the contents of ``path`` at ``ref``."""
        _check_ref(ref)
        return await self.run("show", "--end-of-options", f"{ref}:{path}")

    async def subjects(self, from_ref: str, to_ref: str) -> list[str]:
        """Return the commit subjects in the symmetric range ``from...to``."""
        _check_ref(from_ref)
        _check_ref(to_ref)
        output = await self.run(
            "log", "--pretty=format:%s", "--end-of-options", f"{from_ref}...{to_ref}"
        )
        return output.splitlines()


class GitChangeLogSource:
    """Change log source reading commit subjects from a local clone.

    Args:
        repository: The clone to read
        qualify_as: Repository name used to qualify change references
            (set for the dependency repository)
    """

    def __init__(self, repository: GitRepository, qualify_as: str | None = None) -> None:
        self._repository = repository
        self._qualify_as = qualify_as

    async def changes_between(
        self, repository: str, from_ref: str, to_ref: str
    ) -> list[ChangeRecord]:
        subjects = await self._repository.subjects(from_ref, to_ref)
        changes = sanitise_subjects(subjects, self._qualify_as)
        logger.info(
            "changes_collected",
            repository=repository,
            source="git",
            range=f"{from_ref}...{to_ref}",
            commits=len(subjects),
            changes=len(changes),
        )
        return changes
