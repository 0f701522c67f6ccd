"""
agent-conductor — duplicate-publication guard

Purpose
- Stop several conductor instances working the same repository from opening
  duplicate pull requests for the same issue.

Functional requirements
- Layer 1 runs before admission: the set of issue numbers already claimed by open
  ``[OAC]`` pull requests is fetched alongside discovery and subtracted from the
  candidates. A failed or slow claim fetch leaves the candidates untouched.
- Layer 2 runs immediately before publication and re-queries the search API for
  an open pull request referencing the item's issue. A hit skips publication;
  a failed query allows it.
- The two layers share nothing but the reference pattern, so an outage in one
  query path never disables the other.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final

import httpx

from agent_conductor.constants import COMMIT_TITLE_PREFIX
from agent_conductor.domain.models import Complexity, LinkedIssue, WorkItem
from agent_conductor.errors import ErrorKind, GuardError

logger = logging.getLogger(__name__)

GITHUB_API_BASE_URL: Final[str] = "https://api.github.com"
CLAIM_FETCH_TIMEOUT_SECONDS: Final[float] = 15.0
PUBLISH_CHECK_TIMEOUT_SECONDS: Final[float] = 10.0
ISSUES_PER_PAGE: Final[int] = 30
PULLS_PER_PAGE: Final[int] = 100

ISSUE_REFERENCE_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:fixes|closes|resolves)\s+#(\d+)", re.IGNORECASE
)
_TITLE_LIMIT: Final[int] = 120
_DESCRIPTION_LIMIT: Final[int] = 500


def referenced_issue_numbers(body: str | None) -> set[int]:
    """Issue numbers closed by ``Fixes #N`` style references in ``body``."""

    if not body:
        return set()
    return {int(match) for match in ISSUE_REFERENCE_RE.findall(body)}


class GitHubClient:
    """Minimal async GitHub REST client for one repository."""

    def __init__(
        self,
        owner: str,
        name: str,
        *,
        token: str | None = None,
        base_url: str = GITHUB_API_BASE_URL,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not owner or not name:
            raise ValueError("owner and name are required")
        self.owner = owner
        self.name = name
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "agent-conductor",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            transport=transport,
        )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def list_open_issues(self, *, per_page: int = ISSUES_PER_PAGE) -> list[dict[str, Any]]:
        """Open issues, excluding pull requests the issues endpoint also returns."""

        payload = await self._get_json(
            f"/repos/{self.owner}/{self.name}/issues",
            params={"state": "open", "per_page": per_page, "sort": "updated"},
        )
        return [
            issue
            for issue in _expect_list(payload, "issues")
            if isinstance(issue, dict) and "pull_request" not in issue
        ]

    async def list_open_pulls(
        self,
        *,
        per_page: int = PULLS_PER_PAGE,
        timeout_seconds: float | None = None,
    ) -> list[dict[str, Any]]:
        payload = await self._get_json(
            f"/repos/{self.owner}/{self.name}/pulls",
            params={
                "state": "open",
                "per_page": per_page,
                "sort": "updated",
                "direction": "desc",
            },
            timeout_seconds=timeout_seconds,
        )
        return [pull for pull in _expect_list(payload, "pulls") if isinstance(pull, dict)]

    async def search_open_pulls_referencing(
        self,
        issue_number: int,
        *,
        timeout_seconds: float | None = None,
    ) -> list[dict[str, Any]]:
        """Open pull requests whose body closes ``issue_number``."""

        query = f"repo:{self.full_name} is:pr is:open in:body {issue_number}"
        payload = await self._get_json(
            "/search/issues",
            params={"q": query, "per_page": PULLS_PER_PAGE},
            timeout_seconds=timeout_seconds,
        )
        if not isinstance(payload, dict):
            raise GuardError("search response is not an object")
        items = _expect_list(payload.get("items"), "search.items")
        return [
            item
            for item in items
            if isinstance(item, dict)
            and issue_number in referenced_issue_numbers(_as_text(item.get("body")))
        ]

    async def _get_json(
        self,
        url: str,
        *,
        params: Mapping[str, str | int],
        timeout_seconds: float | None = None,
    ) -> Any:
        request_timeout = (
            httpx.Timeout(timeout_seconds) if timeout_seconds is not None else httpx.USE_CLIENT_DEFAULT
        )
        try:
            response = await self._client.get(url, params=params, timeout=request_timeout)
        except httpx.TimeoutException as exc:
            raise GuardError(f"GitHub request timed out: {url}", kind=ErrorKind.TIMEOUT) from exc
        except httpx.HTTPError as exc:
            raise GuardError(f"GitHub network error for {url}: {exc}") from exc

        if response.status_code == 429 or (
            response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            raise GuardError(f"GitHub rate limit hit for {url}", kind=ErrorKind.RATE_LIMITED)
        if response.status_code >= 400:
            raise GuardError(
                f"GitHub returned HTTP {response.status_code} for {url}",
                kind=ErrorKind.EXECUTION_FAILED,
                retryable=False,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GuardError(f"GitHub returned invalid JSON for {url}", retryable=False) from exc


@dataclass(frozen=True, slots=True)
class PublishDecision:
    """Outcome of the pre-publish duplicate check."""

    publish: bool
    reason: str
    existing_url: str | None = None


CandidateFetcher = Callable[[], Awaitable[Sequence[WorkItem]]]


class ClaimGuard:
    """Both duplicate-prevention layers over one :class:`GitHubClient`."""

    def __init__(
        self,
        client: GitHubClient,
        *,
        title_prefix: str = COMMIT_TITLE_PREFIX,
        claim_timeout_seconds: float = CLAIM_FETCH_TIMEOUT_SECONDS,
        publish_timeout_seconds: float = PUBLISH_CHECK_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._title_prefix = title_prefix
        self._claim_timeout = claim_timeout_seconds
        self._publish_timeout = publish_timeout_seconds

    async def fetch_claim_set(self) -> set[int]:
        """Issue numbers referenced by open pull requests this tool opened."""

        pulls = await self._client.list_open_pulls(timeout_seconds=self._claim_timeout)
        claimed: set[int] = set()
        for pull in pulls:
            title = _as_text(pull.get("title"))
            if not title.startswith(self._title_prefix):
                continue
            claimed |= referenced_issue_numbers(_as_text(pull.get("body")))
        return claimed

    async def discover(self, fetch_candidates: CandidateFetcher) -> list[WorkItem]:
        """
        Run ``fetch_candidates`` and the claim fetch concurrently.

        Candidates whose linked issue is already claimed are dropped. Errors from
        ``fetch_candidates`` propagate; errors from the claim fetch do not.
        """

        candidates, claimed = await asyncio.gather(fetch_candidates(), self._claim_set_or_empty())
        if not claimed:
            return list(candidates)
        kept: list[WorkItem] = []
        for item in candidates:
            if item.linked_issue is not None and item.linked_issue.number in claimed:
                logger.info(
                    "skipping claimed work item",
                    extra={"work_item_id": item.id, "issue": item.linked_issue.number},
                )
                continue
            kept.append(item)
        return kept

    async def discover_open_issues(self) -> list[WorkItem]:
        """Open issues of the guarded repository as work items, claimed ones removed."""

        async def fetch() -> list[WorkItem]:
            issues = await self._client.list_open_issues()
            return work_items_from_issues(issues)

        return await self.discover(fetch)

    async def check_before_publish(self, item: WorkItem) -> PublishDecision:
        if item.linked_issue is None:
            return PublishDecision(publish=True, reason="no linked issue")
        number = item.linked_issue.number
        try:
            matches = await asyncio.wait_for(
                self._client.search_open_pulls_referencing(
                    number, timeout_seconds=self._publish_timeout
                ),
                timeout=self._publish_timeout,
            )
        except (GuardError, TimeoutError) as exc:
            logger.warning(
                "pre-publish check failed; publishing anyway",
                extra={"work_item_id": item.id, "issue": number, "detail": str(exc)},
            )
            return PublishDecision(publish=True, reason=f"check failed: {exc}")

        if not matches:
            return PublishDecision(publish=True, reason="no open contribution found")
        existing_url = _as_text(matches[0].get("html_url")) or None
        return PublishDecision(
            publish=False,
            reason=f"open pull request already references issue #{number}",
            existing_url=existing_url,
        )

    async def _claim_set_or_empty(self) -> set[int]:
        try:
            return await asyncio.wait_for(self.fetch_claim_set(), timeout=self._claim_timeout)
        except (GuardError, TimeoutError) as exc:
            logger.warning("claim set unavailable; continuing unfiltered", extra={"detail": str(exc)})
            return set()


def work_items_from_issues(
    issues: Iterable[Mapping[str, Any]],
    *,
    discovered_at: datetime | None = None,
) -> list[WorkItem]:
    stamp = discovered_at or datetime.now(tz=UTC)
    items: list[WorkItem] = []
    for issue in issues:
        item = work_item_from_issue(issue, discovered_at=stamp)
        if item is not None:
            items.append(item)
    return items


def work_item_from_issue(
    issue: Mapping[str, Any],
    *,
    discovered_at: datetime | None = None,
) -> WorkItem | None:
    """Map one GitHub issue payload to a work item; ``None`` when unusable."""

    number = issue.get("number")
    title = _as_text(issue.get("title")).strip()
    if isinstance(number, bool) or not isinstance(number, int) or number < 1 or not title:
        return None

    labels = tuple(
        label["name"]
        for label in issue.get("labels") or ()
        if isinstance(label, Mapping) and isinstance(label.get("name"), str)
    )
    body = _as_text(issue.get("body")).strip() or "No description provided."
    label_summary = f"Labels: {', '.join(labels)}" if labels else "Labels: none"
    url = _as_text(issue.get("html_url")) or None
    user = issue.get("user")
    author = user.get("login") if isinstance(user, Mapping) else None

    return WorkItem(
        id=f"github-issue-{number}",
        title=_truncate(title, _TITLE_LIMIT),
        description=_truncate(f"{body}\n\n{label_summary}", _DESCRIPTION_LIMIT),
        source="github-issue",
        priority=0,
        complexity=complexity_from_labels(labels),
        linked_issue=LinkedIssue(number=number, url=url, labels=labels),
        metadata={"issue_number": number, "labels": list(labels), "url": url, "author": author},
        discovered_at=discovered_at,
    )


def complexity_from_labels(labels: Iterable[str]) -> Complexity:
    normalized = [label.lower() for label in labels]
    if any("good first issue" in label or "good-first-issue" in label for label in normalized):
        return Complexity.SIMPLE
    if any("feature" in label for label in normalized):
        return Complexity.COMPLEX
    if any("enhancement" in label for label in normalized):
        return Complexity.MODERATE
    if any("bug" in label for label in normalized):
        return Complexity.SIMPLE
    return Complexity.MODERATE


def _expect_list(value: object, what: str) -> list[Any]:
    if not isinstance(value, list):
        raise GuardError(f"GitHub {what} response is not a list", retryable=False)
    return value


def _as_text(value: object) -> str:
    return value if isinstance(value, str) else ""


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


__all__ = [
    "CLAIM_FETCH_TIMEOUT_SECONDS",
    "ISSUE_REFERENCE_RE",
    "PUBLISH_CHECK_TIMEOUT_SECONDS",
    "ClaimGuard",
    "GitHubClient",
    "PublishDecision",
    "complexity_from_labels",
    "referenced_issue_numbers",
    "work_item_from_issue",
    "work_items_from_issues",
]
