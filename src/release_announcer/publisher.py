"""Publishing release notes: draft release on GitHub, notice in Matrix.

The draft release is the product of a run; the chat notice is a courtesy.
A failed publish raises PublishFailure and the run stops before any
notification. A failed notification raises NotificationFailure, which the
orchestrator logs without undoing the release.
"""

from __future__ import annotations

import uuid
from typing import Protocol
from urllib.parse import quote

import httpx

from release_announcer.errors import NotificationFailure, PublishFailure
from release_announcer.logging_config import get_logger
from release_announcer.schemas import PublishedRelease

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class ReleasePublisherProtocol(Protocol):
    async def create_draft_release(
        self, repository: str, tag_name: str, title: str, body: str
    ) -> PublishedRelease:
        """Create a draft release and return where it lives.

        Raises:
            PublishFailure: If the release could not be created
        """
        ...


class ChatNotifierProtocol(Protocol):
    async def post_message(self, channel: str, plain_body: str, formatted_body: str) -> None:
        """Post a message with plain and HTML bodies.

        Raises:
            NotificationFailure: If the message could not be posted
        """
        ...


# ---------------------------------------------------------------------------
# GitHub Releases
# ---------------------------------------------------------------------------


class GitHubReleasePublisher:
    """Creates draft releases through the GitHub REST API."""

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str | None,
        *,
        target_commitish: str = "master",
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._headers: dict[str, str] = {
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._target_commitish = target_commitish
        self._base_url = base_url or self.BASE_URL
        self._transport = transport
        self._timeout = timeout

    async def create_draft_release(
        self, repository: str, tag_name: str, title: str, body: str
    ) -> PublishedRelease:
        payload = {
            "tag_name": tag_name,
            "target_commitish": self._target_commitish,
            "name": title,
            "body": body,
            "draft": True,
            "prerelease": False,
        }
        async with httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.post(f"/repos/{repository}/releases", json=payload)
            except httpx.HTTPError as exc:
                raise PublishFailure(f"Could not reach GitHub: {exc}") from exc

        if resp.is_error:
            raise PublishFailure(
                f"Release creation failed (HTTP {resp.status_code}): {resp.text}"
            )
        data = resp.json()
        html_url = data.get("html_url")
        if not html_url:
            raise PublishFailure(f"Release response has no html_url: {data}")

        logger.info("release_draft_created", repository=repository, tag=tag_name, url=html_url)
        return PublishedRelease(
            html_url=html_url,
            tag_name=data.get("tag_name", tag_name),
            draft=data.get("draft", True),
        )


# ---------------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------------


def build_notification(
    project: str,
    version: str,
    release_url: str,
    pipeline_url: str | None = None,
) -> tuple[str, str]:
    """Build the plain and HTML bodies announcing a new draft release."""
    plain = [
        f"**New version of {project} tagged:** {version}.",
        f"Draft release created: {release_url}",
    ]
    formatted = [
        f"<strong>New version of {project} tagged:</strong> {version}<br />",
        f"Draft release created: {release_url} <br />",
    ]
    if pipeline_url:
        plain.append(f"Build pipeline: {pipeline_url}")
        formatted.append(f"Build pipeline: {pipeline_url}")
    return "\n".join(plain), "\n".join(formatted)


class MatrixNotifier:
    """Posts HTML-formatted messages to a Matrix room."""

    def __init__(
        self,
        homeserver: str,
        access_token: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._homeserver = homeserver.rstrip("/")
        self._access_token = access_token
        self._transport = transport
        self._timeout = timeout

    async def post_message(self, channel: str, plain_body: str, formatted_body: str) -> None:
        txn_id = uuid.uuid4().hex
        url = (
            f"{self._homeserver}/_matrix/client/v3/rooms/{quote(channel, safe='')}"
            f"/send/m.room.message/{txn_id}"
        )
        content = {
            "msgtype": "m.text",
            "body": plain_body,
            "format": "org.matrix.custom.html",
            "formatted_body": formatted_body,
        }
        async with httpx.AsyncClient(
            headers={"Authorization": f"Bearer {self._access_token}"},
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.put(url, json=content)
            except httpx.HTTPError as exc:
                raise NotificationFailure(f"Could not reach Matrix: {exc}") from exc

        if resp.is_error:
            raise NotificationFailure(
                f"Matrix message failed (HTTP {resp.status_code}): {resp.text}"
            )
        logger.info("notification_sent", channel=channel)
