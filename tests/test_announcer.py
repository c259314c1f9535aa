"""Tests for the release orchestrator and CLI.

Collaborators are replaced with in-memory fakes (StaticChangeLogSource,
MockLabelOracle) and AsyncMocks for the tag verifier, publisher and
notifier, so the whole pipeline runs without git or network access.

Run with: pytest tests/test_announcer.py -v
"""

from __future__ import annotations

import sys
from unittest.mock import AsyncMock, patch

import pytest
import structlog

from release_announcer.announcer import ReleaseAnnouncer, main
from release_announcer.config import DEFAULT_PRIORITY_DESCRIPTIONS, AnnouncerConfig
from release_announcer.context.changes import StaticChangeLogSource
from release_announcer.context.github import TagStatus
from release_announcer.context.labels import MockLabelOracle
from release_announcer.errors import (
    LookupFailure,
    NotificationFailure,
    PublishFailure,
    RangeResolutionFailure,
    TagVerificationFailure,
)
from release_announcer.schemas import PriorityLevel, PublishedRelease

PRIMARY = "paritytech/polkadot"
DEPENDENCY = "paritytech/substrate"
RELEASE_URL = "https://github.com/paritytech/polkadot/releases/tag/untagged-1"


def lock_file(commit: str) -> str:
    return (
        "[[package]]\n"
        'name = "sc-cli"\n'
        'version = "0.10.0-dev"\n'
        f'source = "git+https://github.com/paritytech/substrate?branch=master#{commit}"\n'
    )


class FakeRefs:
    """Tags and files of the primary repository."""

    def __init__(self, tags: list[str], files: dict[tuple[str, str], str]) -> None:
        self._tags = tags
        self._files = files

    async def tags(self) -> list[str]:
        return self._tags

    async def show(self, ref: str, path: str) -> str:
        try:
            return self._files[(ref, path)]
        except KeyError:
            raise RangeResolutionFailure(f"{path} not found at {ref}") from None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> AnnouncerConfig:
    return AnnouncerConfig(matrix_access_token="token", matrix_room_id="!room:matrix.org")


@pytest.fixture
def refs() -> FakeRefs:
    return FakeRefs(
        ["v0.9.0", "v0.9.1", "v0.9.2", "nightly"],
        {
            ("v0.9.1", "Cargo.lock"): lock_file("aaa111"),
            ("v0.9.2", "Cargo.lock"): lock_file("bbb222"),
            ("v0.9.2", "runtime/polkadot/src/lib.rs"): "    spec_version: 9110,\n",
        },
    )


@pytest.fixture
def primary_source() -> StaticChangeLogSource:
    return StaticChangeLogSource(
        {
            (PRIMARY, "v0.9.1", "v0.9.2"): [
                "Fix sync (#10)",
                "[contracts] Bump schedule (#12)",
                "Runtime upgrade (#11)",
                "Silent chore (#13)",
                "Merge branch 'master'",
            ]
        }
    )


@pytest.fixture
def dependency_source() -> StaticChangeLogSource:
    return StaticChangeLogSource(
        {
            (DEPENDENCY, "aaa111", "bbb222"): [
                "Runtime fix (#20)",
                "Security fix (#21)",
                "Refactor internals (#22)",
            ]
        },
        qualify_as=DEPENDENCY,
    )


@pytest.fixture
def labels() -> MockLabelOracle:
    return MockLabelOracle(
        {
            PRIMARY: {
                11: {"B2-runtimenoteworthy", "C3-medium"},
                # Excluded before analysis, so it must not escalate anything
                12: {"C9-critical"},
                13: {"B0-silent", "C7-high"},
            },
            DEPENDENCY: {
                20: {"B7-runtimenoteworthy", "B3-apinoteworthy"},
                21: {"C7-high"},
            },
        }
    )


@pytest.fixture
def tags() -> AsyncMock:
    verifier = AsyncMock()
    verifier.tag_status.return_value = TagStatus.SIGNED
    return verifier


@pytest.fixture
def publisher() -> AsyncMock:
    mock = AsyncMock()
    mock.create_draft_release.return_value = PublishedRelease(
        html_url=RELEASE_URL, tag_name="v0.9.2"
    )
    return mock


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def announcer(
    config, refs, primary_source, dependency_source, labels, tags, publisher, notifier
) -> ReleaseAnnouncer:
    return ReleaseAnnouncer(
        config,
        labels=labels,
        tags=tags,
        refs=refs,
        primary_source=primary_source,
        dependency_source=dependency_source,
        publisher=publisher,
        notifier=notifier,
    )


# ---------------------------------------------------------------------------
# prepare()
# ---------------------------------------------------------------------------


class TestPrepare:
    @pytest.mark.asyncio
    async def test_composes_release_notes(self, announcer: ReleaseAnnouncer) -> None:
        announcement = await announcer.prepare("v0.9.2")

        high = DEFAULT_PRIORITY_DESCRIPTIONS[PriorityLevel.HIGH]
        assert announcement.overall_priority == PriorityLevel.HIGH
        assert announcement.title == "Polkadot v0.9.2"
        assert announcement.banner == f"{high} - due to change(s): #13 {DEPENDENCY}#21"
        assert announcement.body == "\n".join(
            [
                announcement.banner,
                "",
                "* Fix sync (#10)",
                "",
                "## Runtime",
                "* Runtime upgrade (#11)",
                "",
                "# Substrate changes",
                "",
                "## Runtime",
                f"* Runtime fix ({DEPENDENCY}#20)",
                "",
                "## API",
                f"* Runtime fix ({DEPENDENCY}#20)",
            ]
        )

    @pytest.mark.asyncio
    async def test_excluded_changes_are_never_looked_up(
        self, announcer: ReleaseAnnouncer, labels: MockLabelOracle
    ) -> None:
        await announcer.prepare("v0.9.2")
        assert (PRIMARY, 12) not in labels.calls

    @pytest.mark.asyncio
    async def test_explicit_previous_version(
        self, announcer: ReleaseAnnouncer, refs: FakeRefs
    ) -> None:
        refs._files[("v0.9.0", "Cargo.lock")] = lock_file("aaa111")
        with pytest.raises(RangeResolutionFailure, match="v0.9.0...v0.9.2"):
            # The fake source only knows v0.9.1...v0.9.2
            await announcer.prepare("v0.9.2", previous_version="v0.9.0")

    @pytest.mark.asyncio
    async def test_preamble_from_configured_runtimes(self, announcer: ReleaseAnnouncer) -> None:
        announcer.config = announcer.config.model_copy(
            update={"runtimes": {"Polkadot": "runtime/polkadot/src/lib.rs"}}
        )
        announcement = await announcer.prepare("v0.9.2")
        assert announcement.body.startswith(
            f"{announcement.banner}\n\nPolkadot native runtime: 9110\n\n* Fix sync (#10)"
        )

    @pytest.mark.asyncio
    async def test_unsigned_tag_aborts(
        self, announcer: ReleaseAnnouncer, tags: AsyncMock, labels: MockLabelOracle
    ) -> None:
        tags.tag_status.return_value = TagStatus.UNSIGNED
        with pytest.raises(TagVerificationFailure, match="not been signed"):
            await announcer.prepare("v0.9.2")
        assert labels.calls == []

    @pytest.mark.asyncio
    async def test_missing_tag_aborts(self, announcer: ReleaseAnnouncer, tags: AsyncMock) -> None:
        tags.tag_status.return_value = TagStatus.NOT_FOUND
        with pytest.raises(TagVerificationFailure, match="not found"):
            await announcer.prepare("v0.9.2")

    @pytest.mark.asyncio
    async def test_tag_check_can_be_disabled(
        self, announcer: ReleaseAnnouncer, tags: AsyncMock
    ) -> None:
        announcer.config = announcer.config.model_copy(update={"require_signed_tag": False})
        await announcer.prepare("v0.9.2")
        tags.tag_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_version_is_range_failure(self, announcer: ReleaseAnnouncer) -> None:
        with pytest.raises(RangeResolutionFailure):
            await announcer.prepare("v1.0.0")

    @pytest.mark.asyncio
    async def test_dependency_lookup_failure_prevents_composition(
        self, config, refs, primary_source, dependency_source, tags
    ) -> None:
        announcer = ReleaseAnnouncer(
            config,
            labels=MockLabelOracle(failing=[21]),
            tags=tags,
            refs=refs,
            primary_source=primary_source,
            dependency_source=dependency_source,
        )
        with pytest.raises(LookupFailure):
            await announcer.prepare("v0.9.2")


# ---------------------------------------------------------------------------
# announce()
# ---------------------------------------------------------------------------


class TestAnnounce:
    @pytest.mark.asyncio
    async def test_publishes_then_notifies(
        self, announcer: ReleaseAnnouncer, publisher: AsyncMock, notifier: AsyncMock
    ) -> None:
        release = await announcer.announce("v0.9.2")

        assert release.html_url == RELEASE_URL
        repository, tag, title, body = publisher.create_draft_release.call_args.args
        assert (repository, tag, title) == (PRIMARY, "v0.9.2", "Polkadot v0.9.2")
        assert body.startswith("Upgrade priority:")

        room, plain, formatted = notifier.post_message.call_args.args
        assert room == "!room:matrix.org"
        assert RELEASE_URL in plain
        assert "<strong>" in formatted

    @pytest.mark.asyncio
    async def test_publish_failure_skips_notification(
        self, announcer: ReleaseAnnouncer, publisher: AsyncMock, notifier: AsyncMock
    ) -> None:
        publisher.create_draft_release.side_effect = PublishFailure("HTTP 500")
        with pytest.raises(PublishFailure):
            await announcer.announce("v0.9.2")
        notifier.post_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_release(
        self, announcer: ReleaseAnnouncer, notifier: AsyncMock
    ) -> None:
        notifier.post_message.side_effect = NotificationFailure("HTTP 403")
        release = await announcer.announce("v0.9.2")
        assert release.html_url == RELEASE_URL

    @pytest.mark.asyncio
    async def test_no_room_configured_skips_notification(
        self, announcer: ReleaseAnnouncer, notifier: AsyncMock
    ) -> None:
        announcer.config = announcer.config.model_copy(update={"matrix_room_id": None})
        await announcer.announce("v0.9.2")
        notifier.post_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_preparation_publishes_nothing(
        self, announcer: ReleaseAnnouncer, tags: AsyncMock, publisher: AsyncMock
    ) -> None:
        tags.tag_status.return_value = TagStatus.UNSIGNED
        with pytest.raises(TagVerificationFailure):
            await announcer.announce("v0.9.2")
        publisher.create_draft_release.assert_not_called()


# ---------------------------------------------------------------------------
# CLI Tests
# ---------------------------------------------------------------------------


class TestCLI:
    @pytest.fixture(autouse=True)
    def logs_on_stderr(self, capsys):
        # Log to the captured stderr without caching loggers bound to it
        structlog.configure(
            # Resolve sys.stderr per logger: capsys swaps its stream between phases
            logger_factory=lambda *args: structlog.PrintLogger(file=sys.stderr),
            cache_logger_on_first_use=False,
        )
        with patch("release_announcer.announcer.setup_logging"):
            yield
        structlog.reset_defaults()

    def test_dry_run_prints_notes(self, tmp_path, capsys) -> None:
        with patch("release_announcer.announcer.run", new=AsyncMock(return_value="notes")) as run:
            code = main(["v0.9.2", "--dry-run", "--config", str(tmp_path / "none.yaml")])

        assert code == 0
        assert capsys.readouterr().out.strip() == "notes"
        _, version, previous, dry_run = run.call_args.args
        assert (version, previous, dry_run) == ("v0.9.2", None, True)

    def test_previous_version_is_forwarded(self, tmp_path) -> None:
        with patch("release_announcer.announcer.run", new=AsyncMock(return_value=RELEASE_URL)) as run:
            main(["v0.9.2", "-p", "v0.9.0", "--config", str(tmp_path / "none.yaml")])
        assert run.call_args.args[2] == "v0.9.0"

    def test_release_error_exits_nonzero(self, tmp_path, capsys) -> None:
        failing = AsyncMock(side_effect=TagVerificationFailure("Tag v0.9.2 not found"))
        with patch("release_announcer.announcer.run", new=failing):
            code = main(["v0.9.2", "--config", str(tmp_path / "none.yaml")])

        assert code == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "release_failed" in captured.err

    @pytest.mark.parametrize(
        "argv", [["--output=/tmp/notes"], ["v0.9.2", "--previous", "--output=/tmp/notes"], ["master"]]
    )
    def test_non_release_tags_are_rejected(self, argv, tmp_path) -> None:
        run = AsyncMock(return_value="notes")
        with patch("release_announcer.announcer.run", new=run):
            with pytest.raises(SystemExit) as excinfo:
                main([*argv, "--config", str(tmp_path / "none.yaml")])

        assert excinfo.value.code == 2
        run.assert_not_called()
