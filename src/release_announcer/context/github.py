"""GitHub API client for release context.

Answers the questions a release run asks the forge:
- Which labels does change N carry? (label oracle)
- Is the release tag present and signed?
- Which changes were merged between two commits? (compare API, used when
  no local clone of the dependency repository is available)

Design notes:
- Uses a single httpx.AsyncClient per GitHubClient; close it with
  ``aclose()`` or ``async with``
- Transport errors are retried with tenacity; HTTP error statuses are not
- Errors are mapped onto the release error taxonomy (LookupFailure,
  RangeResolutionFailure, TagVerificationFailure) at this boundary

GitHub API docs: https://docs.github.com/en/rest
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Any, Protocol

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from release_announcer.context.changes import sanitise_subjects
from release_announcer.errors import (
    LookupFailure,
    RangeResolutionFailure,
    TagVerificationFailure,
)
from release_announcer.logging_config import get_logger
from release_announcer.schemas import ChangeRecord

logger = get_logger(__name__)


class TagStatus(str, Enum):
    """Outcome of checking a release tag on the forge."""

    SIGNED = "signed"
    UNSIGNED = "unsigned"
    NOT_FOUND = "not_found"


class TagVerifierProtocol(Protocol):
    """Checks release tags on the forge."""

    async def tag_status(self, repository: str, tag: str) -> TagStatus:
        ...


# ---------------------------------------------------------------------------
# Concrete Implementation
# ---------------------------------------------------------------------------


class GitHubClient:
    """GitHub REST client using httpx.

    Usage:
        async with GitHubClient(token="ghp_...") as github:
            labels = await github.labels_for("paritytech/polkadot", 1234)
    """

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            token: GitHub token. Falls back to the GITHUB_TOKEN environment
                   variable if not provided.
            base_url: API root (GitHub Enterprise or tests)
            transport: Custom httpx transport (tests use httpx.MockTransport)
            timeout: Per-request timeout in seconds
        """
        self._token = token or os.environ.get("GITHUB_TOKEN", "")
        self._headers: dict[str, str] = {
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            self._headers["Authorization"] = f"Bearer {self._token}"
        self._base_url = base_url or self.BASE_URL
        self._transport = transport
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def _get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        return await self._http().get(url, params=params)

    async def get_pages(self, url: str) -> list[Any]:
        """Fetch every page of a paginated endpoint.

        GitHub returns a 'Link' header with the URL of the next page.

        Returns:
            The decoded JSON body of each page, in order

        Raises:
            httpx.HTTPError: If any request fails
        """
        pages: list[Any] = []
        next_url: str | None = url
        params: dict[str, Any] | None = {"per_page": 100}

        while next_url:
            resp = await self._get(next_url, params=params)
            resp.raise_for_status()
            pages.append(resp.json())
            next_url = self._parse_next_link(resp.headers.get("link", ""))
            params = None  # the next link already carries the query

        return pages

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Extract the 'next' URL from a GitHub Link header."""
        if not link_header:
            return None
        for part in link_header.split(","):
            if 'rel="next"' in part:
                return part.split(";")[0].strip().strip("<>")
        return None

    # -- Labels ------------------------------------------------------------

    async def labels_for(self, repository: str, change_number: int) -> frozenset[str]:
        """Return the labels attached to a pull request.

        Raises:
            LookupFailure: If the labels could not be fetched
        """
        try:
            pages = await self.get_pages(f"/repos/{repository}/issues/{change_number}/labels")
        except httpx.HTTPStatusError as exc:
            raise LookupFailure(
                repository, change_number, f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise LookupFailure(repository, change_number, str(exc)) from exc

        labels = frozenset(label["name"] for page in pages for label in page)
        logger.debug(
            "labels_fetched",
            repository=repository,
            change=change_number,
            labels=sorted(labels),
        )
        return labels

    async def has_label(self, repository: str, change_number: int, label: str) -> bool:
        return label in await self.labels_for(repository, change_number)

    # -- Tags --------------------------------------------------------------

    async def tag_status(self, repository: str, tag: str) -> TagStatus:
        """Check whether ``tag`` exists and carries a verified signature.

        Lightweight tags cannot be signed and report UNSIGNED.

        Raises:
            TagVerificationFailure: If the forge could not be queried
        """
        try:
            ref_resp = await self._get(f"/repos/{repository}/git/ref/tags/{tag}")
            if ref_resp.status_code == 404:
                return TagStatus.NOT_FOUND
            ref_resp.raise_for_status()

            target = ref_resp.json()["object"]
            if target["type"] != "tag":
                return TagStatus.UNSIGNED

            tag_resp = await self._get(f"/repos/{repository}/git/tags/{target['sha']}")
            tag_resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise TagVerificationFailure(f"Could not check tag {tag}: {exc}") from exc

        verification = tag_resp.json().get("verification") or {}
        return TagStatus.SIGNED if verification.get("verified") else TagStatus.UNSIGNED


class GitHubChangeLogSource:
    """Change log source backed by the compare API.

    Commits are reported newest first, like ``git log``.
    """

    def __init__(self, client: GitHubClient, qualify_as: str | None = None) -> None:
        self._client = client
        self._qualify_as = qualify_as

    async def changes_between(
        self, repository: str, from_ref: str, to_ref: str
    ) -> list[ChangeRecord]:
        try:
            pages = await self._client.get_pages(
                f"/repos/{repository}/compare/{from_ref}...{to_ref}"
            )
        except httpx.HTTPStatusError as exc:
            raise RangeResolutionFailure(
                f"Cannot compare {from_ref}...{to_ref} in {repository}: "
                f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RangeResolutionFailure(
                f"Cannot compare {from_ref}...{to_ref} in {repository}: {exc}"
            ) from exc

        commits = [commit for page in pages for commit in page.get("commits", [])]
        subjects = [
            commit["commit"]["message"].split("\n", 1)[0] for commit in reversed(commits)
        ]
        changes = sanitise_subjects(subjects, self._qualify_as)
        logger.info(
            "changes_collected",
            repository=repository,
            source="github",
            range=f"{from_ref}...{to_ref}",
            commits=len(commits),
            changes=len(changes),
        )
        return changes
