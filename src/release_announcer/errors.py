"""Error taxonomy for a release run.

Every collaborator failure surfaces as one of these types. The analysis
core never recovers from them locally; the orchestrator decides what is
fatal (everything except NotificationFailure).
"""

from __future__ import annotations


class ReleaseAnnouncerError(Exception):
    """Base class for all release announcer failures."""


class ConfigError(ReleaseAnnouncerError):
    """The configuration file or environment is invalid."""


class LookupFailure(ReleaseAnnouncerError):
    """A label query could not be answered.

    Never treat this as "label absent": doing so would silently drop a
    priority escalation.
    """

    def __init__(self, repository: str, change_number: int, reason: str) -> None:
        super().__init__(
            f"Label lookup failed for {repository}#{change_number}: {reason}"
        )
        self.repository = repository
        self.change_number = change_number


class RangeResolutionFailure(ReleaseAnnouncerError):
    """A version ref (tag, commit, lock file entry) could not be resolved."""


class TagVerificationFailure(ReleaseAnnouncerError):
    """The release tag is missing or not signed."""


class PublishFailure(ReleaseAnnouncerError):
    """The draft release could not be created."""


class NotificationFailure(ReleaseAnnouncerError):
    """The chat notification could not be posted."""
