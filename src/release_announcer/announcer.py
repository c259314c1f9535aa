"""Release announcement orchestrator.

This module ties together all the components:
- Range discovery (previous release tag, dependency revisions from the lock file)
- Change collection (context/git.py, context/github.py)
- Label snapshot, priority resolution and partitioning (one pass per repository)
- Composition (composer.py)
- Publishing and notification (publisher.py)

The flow for ``announce(version)``:
1. Verify the release tag is signed
2. Work out the primary and dependency ranges
3. Collect and filter each repository's changes
4. Analyze the primary repository, then the dependency repository
5. Compose the release notes
6. Create the draft release (fatal on failure)
7. Notify the chat room (best effort)

Nothing is composed unless both analyses complete.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from release_announcer.composer import compose
from release_announcer.config import AnnouncerConfig, load_config
from release_announcer.context.changes import (
    ChangeLogSourceProtocol,
    dependency_commit,
    previous_release_tag,
)
from release_announcer.context.git import GitChangeLogSource, GitRepository
from release_announcer.context.github import (
    GitHubChangeLogSource,
    GitHubClient,
    TagStatus,
    TagVerifierProtocol,
)
from release_announcer.context.labels import LabelOracleProtocol, collect_labels
from release_announcer.errors import (
    NotificationFailure,
    ReleaseAnnouncerError,
    TagVerificationFailure,
)
from release_announcer.logging_config import get_logger, release_context, setup_logging
from release_announcer.partition import RuleSet, exclude_prefixed, partition_changes
from release_announcer.preamble import render_preamble, spec_version, toolchain_version
from release_announcer.priority import resolve_priority
from release_announcer.publisher import (
    ChatNotifierProtocol,
    GitHubReleasePublisher,
    MatrixNotifier,
    ReleasePublisherProtocol,
    build_notification,
)
from release_announcer.schemas import (
    RELEASE_TAG_RE,
    ChangeRecord,
    PublishedRelease,
    ReleaseAnnouncement,
    RepositoryAnalysis,
)

logger = get_logger(__name__)


class ReleaseRefsProtocol(Protocol):
    """Read access to the primary repository's tags and files."""

    async def tags(self) -> list[str]:
        ...

    async def show(self, ref: str, path: str) -> str:
        ...


class ReleaseAnnouncer:
    """Orchestrates a release run.

    The announcer holds no per-run state; ``prepare()`` and ``announce()``
    can be called repeatedly.

    Usage:
        announcer = build_announcer(load_config("release-announcer.yaml"))
        release = await announcer.announce("v0.9.2")
    """

    def __init__(
        self,
        config: AnnouncerConfig,
        *,
        labels: LabelOracleProtocol,
        tags: TagVerifierProtocol,
        refs: ReleaseRefsProtocol,
        primary_source: ChangeLogSourceProtocol,
        dependency_source: ChangeLogSourceProtocol,
        publisher: ReleasePublisherProtocol | None = None,
        notifier: ChatNotifierProtocol | None = None,
        owned_clients: Sequence[Any] = (),
    ) -> None:
        """Initialize the announcer with its collaborators.

        Args:
            config: Labels, repositories and publishing settings
            labels: Label oracle for both repositories
            tags: Release tag verifier
            refs: Tags and files of the primary repository
            primary_source: Change log of the primary repository
            dependency_source: Change log of the dependency repository
            publisher: Draft release publisher (required by ``announce``)
            notifier: Chat notifier (notifications skipped if None)
            owned_clients: Clients closed by ``aclose()``
        """
        self.config = config
        self.labels = labels
        self.tags = tags
        self.refs = refs
        self.primary_source = primary_source
        self.dependency_source = dependency_source
        self.publisher = publisher
        self.notifier = notifier
        self._owned_clients = list(owned_clients)

    async def aclose(self) -> None:
        for client in self._owned_clients:
            await client.aclose()

    # -- Analysis ----------------------------------------------------------

    async def analyze(
        self,
        repository: str,
        changes: Sequence[ChangeRecord],
        rule_set: RuleSet,
    ) -> RepositoryAnalysis:
        """Resolve priority and partition one repository's changes.

        Raises:
            LookupFailure: If any label lookup fails
        """
        snapshot = await collect_labels(
            self.labels, repository, changes, self.config.label_concurrency
        )
        resolution = resolve_priority(changes, snapshot, self.config.labels.priority)
        partition = partition_changes(changes, snapshot, rule_set)

        logger.info(
            "repository_analyzed",
            repository=repository,
            changes=len(changes),
            silenced=len(partition.silenced),
            priority=resolution.final_priority.value,
            justified_by=list(resolution.justifying_change_ids),
        )
        return RepositoryAnalysis(
            repository=repository,
            final_priority=resolution.final_priority,
            justifying_change_ids=resolution.justifying_change_ids,
            categorized_changes=partition.categorized,
            general_changes=partition.general,
        )

    # -- Range discovery ---------------------------------------------------

    async def verify_tag(self, version: str) -> None:
        """Abort unless the release tag exists and is signed.

        Raises:
            TagVerificationFailure: If the tag is missing or unsigned
        """
        if not self.config.require_signed_tag:
            logger.warning("tag_verification_skipped", version=version)
            return
        status = await self.tags.tag_status(self.config.primary.name, version)
        if status == TagStatus.NOT_FOUND:
            raise TagVerificationFailure(f"Tag {version} not found. Aborting release.")
        if status != TagStatus.SIGNED:
            raise TagVerificationFailure(
                f"Tag {version} found but has not been signed. Aborting release."
            )
        logger.info("tag_verified", version=version)

    async def dependency_range(self, previous: str, version: str) -> tuple[str, str]:
        """Dependency revisions pinned by the lock file at both releases.

        Raises:
            RangeResolutionFailure: If either lock file lacks the pin
        """
        package = self.config.dependency_lock_package
        previous_lock = await self.refs.show(previous, self.config.lock_file)
        current_lock = await self.refs.show(version, self.config.lock_file)
        return (
            dependency_commit(previous_lock, package),
            dependency_commit(current_lock, package),
        )

    async def preamble(self, version: str) -> str:
        runtime_versions = {
            name: spec_version(await self.refs.show(version, path))
            for name, path in self.config.runtimes.items()
        }
        toolchains = [
            await asyncio.to_thread(toolchain_version, command)
            for command in self.config.toolchains.values()
        ]
        return render_preamble(runtime_versions, toolchains)

    # -- Pipeline ----------------------------------------------------------

    async def prepare(
        self, version: str, previous_version: str | None = None
    ) -> ReleaseAnnouncement:
        """Compose the release notes for ``version`` without publishing.

        Args:
            version: Tag being released
            previous_version: Previous release tag (discovered from the
                primary repository's tags if omitted)

        Returns:
            The composed ReleaseAnnouncement

        Raises:
            ReleaseAnnouncerError: If any step fails; nothing is composed
        """
        config = self.config
        await self.verify_tag(version)

        previous = previous_version or previous_release_tag(await self.refs.tags(), version)
        dependency_from, dependency_to = await self.dependency_range(previous, version)
        logger.info(
            "range_resolved",
            version=version,
            previous=previous,
            dependency_range=f"{dependency_from}...{dependency_to}",
        )

        primary_changes = await self.primary_source.changes_between(
            config.primary.name, previous, version
        )
        kept = exclude_prefixed(primary_changes, config.primary.excluded_prefixes)
        if len(kept) != len(primary_changes):
            logger.info(
                "changes_excluded",
                repository=config.primary.name,
                excluded=len(primary_changes) - len(kept),
            )
        dependency_changes = await self.dependency_source.changes_between(
            config.dependency.name, dependency_from, dependency_to
        )

        primary = await self.analyze(config.primary.name, kept, RuleSet.primary(config.labels))
        dependency = await self.analyze(
            config.dependency.name, dependency_changes, RuleSet.dependency(config.labels)
        )

        composition = compose(
            primary,
            dependency,
            config.descriptions,
            config.dependency.display_name,
            preamble=await self.preamble(version),
        )
        logger.info(
            "release_composed",
            version=version,
            priority=composition.overall_priority.value,
        )
        return ReleaseAnnouncement(
            version=version,
            title=config.release_title(version),
            overall_priority=composition.overall_priority,
            banner=composition.banner,
            body=composition.body,
        )

    async def announce(
        self, version: str, previous_version: str | None = None
    ) -> PublishedRelease:
        """Compose, publish as a draft release, and notify.

        Raises:
            PublishFailure: If the draft release could not be created
            ReleaseAnnouncerError: If preparing the notes failed
        """
        if self.publisher is None:
            raise ReleaseAnnouncerError("No release publisher configured")

        announcement = await self.prepare(version, previous_version)
        release = await self.publisher.create_draft_release(
            self.config.primary.name,
            announcement.version,
            announcement.title,
            announcement.body,
        )
        await self.notify(release)
        return release

    async def notify(self, release: PublishedRelease) -> None:
        """Post the release notice to chat; failures are logged only."""
        room = self.config.matrix_room_id
        if self.notifier is None or not room:
            logger.info("notification_skipped", tag=release.tag_name)
            return

        plain, formatted = build_notification(
            self.config.primary.display_name,
            release.tag_name,
            release.html_url,
            self.config.pipeline_url,
        )
        try:
            await self.notifier.post_message(room, plain, formatted)
        except NotificationFailure as exc:
            logger.warning("notification_failed", tag=release.tag_name, error=str(exc))


def build_announcer(config: AnnouncerConfig) -> ReleaseAnnouncer:
    """Wire a ReleaseAnnouncer to git, GitHub and Matrix from config."""
    github = GitHubClient(token=config.github_token)
    primary_repo = GitRepository(config.primary.local_path or Path("."))

    if config.dependency.local_path is not None:
        dependency_source: ChangeLogSourceProtocol = GitChangeLogSource(
            GitRepository(config.dependency.local_path),
            qualify_as=config.dependency.name,
        )
    else:
        dependency_source = GitHubChangeLogSource(github, qualify_as=config.dependency.name)

    notifier = None
    if config.notifications_enabled:
        notifier = MatrixNotifier(config.matrix_homeserver, config.matrix_access_token or "")

    return ReleaseAnnouncer(
        config,
        labels=github,
        tags=github,
        refs=primary_repo,
        primary_source=GitChangeLogSource(primary_repo),
        dependency_source=dependency_source,
        publisher=GitHubReleasePublisher(
            config.release_token, target_commitish=config.target_commitish
        ),
        notifier=notifier,
        owned_clients=[github],
    )


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------


async def run(
    config: AnnouncerConfig,
    version: str,
    previous_version: str | None = None,
    dry_run: bool = False,
) -> str:
    """Run one release and return what the CLI prints."""
    announcer = build_announcer(config)
    try:
        with release_context(version=version, dry_run=dry_run):
            if dry_run:
                announcement = await announcer.prepare(version, previous_version)
                return announcement.body
            release = await announcer.announce(version, previous_version)
            return release.html_url
    finally:
        await announcer.aclose()


def release_tag(value: str) -> str:
    """argparse type for tags handed on to git."""
    if not RELEASE_TAG_RE.match(value):
        raise argparse.ArgumentTypeError(f"not a release tag: {value!r}")
    return value


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Usage:
        release-announcer v0.9.2
        release-announcer v0.9.2 --previous v0.9.1 --dry-run
    """
    parser = argparse.ArgumentParser(
        prog="release-announcer",
        description="Compose release notes for a tagged version and publish a draft release",
    )
    parser.add_argument("version", type=release_tag, help="Tag being released (e.g. v0.9.2)")
    parser.add_argument(
        "--previous", "-p",
        type=release_tag,
        help="Previous release tag (default: the release tag preceding VERSION)",
    )
    parser.add_argument(
        "--config", "-c",
        default=os.environ.get("RELEASE_ANNOUNCER_CONFIG", "release-announcer.yaml"),
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the release notes instead of publishing them",
    )
    args = parser.parse_args(argv)

    setup_logging()
    try:
        config = load_config(args.config)
        output = asyncio.run(run(config, args.version, args.previous, args.dry_run))
    except ReleaseAnnouncerError as exc:
        logger.error("release_failed", version=args.version, error=str(exc))
        return 1

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
