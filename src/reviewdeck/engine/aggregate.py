"""Turn raw GitHub payloads into unified :class:`PullRequest` records.

One listing cycle fetches the PR list once, then for every PR fetches its
reviews and issue comments.  Detail fetches for different PRs run
concurrently; a single PR is only emitted once both of its fetches have
finished.  A failed detail fetch degrades that PR to empty reviews and/or
comments instead of failing the listing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from reviewdeck.engine.status import is_locked, resolve_status
from reviewdeck.github_api import GitHubError
from reviewdeck.models import Comment, PullRequest, Review, Role
from reviewdeck.payloads import GitHubIssueComment, GitHubPullRequest, GitHubReview

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from reviewdeck.config import Config
    from reviewdeck.github_api import GitHubClient
    from reviewdeck.models import User

logger = logging.getLogger(__name__)


class AggregationResult(BaseModel):
    """Pull requests produced by one listing cycle plus the payloads that were excluded."""

    pull_requests: list[PullRequest] = Field(default_factory=list)
    failures: list[str] = Field(default_factory=list, description="One message per excluded PR payload")


# ---------------------------------------------------------------------------
# Pure steps
# ---------------------------------------------------------------------------


def merge_comments(issue_comments: Iterable[GitHubIssueComment], reviews: Iterable[GitHubReview]) -> list[Comment]:
    """Combine issue comments and review bodies into one conversation.

    Issue comments come first, then review bodies, each in fetch order.
    Entries without a body or a timestamp are dropped.
    """
    merged = [c for c in (ic.to_comment() for ic in issue_comments) if c is not None]
    merged.extend(c for c in (r.to_comment() for r in reviews) if c is not None)
    return merged


def convert_reviews(reviews: Iterable[GitHubReview]) -> list[Review]:
    """Convert submitted reviews; drafts without ``submitted_at`` are skipped."""
    return [r for r in (raw.to_review() for raw in reviews) if r is not None]


def assign_roles(author: User, participants: Iterable[User]) -> dict[int, Role]:
    """Build the PR-scoped role map.

    The author is always ``author``; every other participant is ``reviewer``.
    """
    roles = {user.id: Role.REVIEWER for user in participants if user.id != author.id}
    roles[author.id] = Role.AUTHOR
    return roles


def build_pull_request(
    raw: GitHubPullRequest,
    reviews: Sequence[GitHubReview] = (),
    issue_comments: Sequence[GitHubIssueComment] = (),
) -> PullRequest:
    """Build one unified record from a PR payload and its fetched details."""
    converted = convert_reviews(reviews)
    merged = raw.is_merged
    status = resolve_status(raw.state, merged, converted)

    author = raw.user.to_user()
    assigned = [u.to_user() for u in raw.requested_reviewers or []]
    assignees = [u.to_user() for u in raw.assignees or []]
    participants = [*assignees, *assigned, *(r.reviewer for r in converted)]

    return PullRequest(
        number=raw.number,
        title=raw.title,
        description=raw.body or "",
        author=author,
        assigned_reviewers=assigned,
        created_at=raw.created_at,
        updated_at=raw.updated_at,
        state=raw.state,
        merged=merged,
        status=status,
        reviews=converted,
        comments=merge_comments(issue_comments, reviews),
        source_branch=raw.head.ref,
        target_branch=raw.base.ref,
        is_locked=is_locked(raw.state, status),
        roles=assign_roles(author, participants),
    )


def parse_pull_request(payload: Any, index: int) -> GitHubPullRequest:
    """Validate one raw PR payload.

    Raises:
        ValueError: With a message naming the PR (or its list position).
    """
    try:
        return GitHubPullRequest.model_validate(payload)
    except ValidationError as exc:
        number = payload.get("number") if isinstance(payload, dict) else None
        where = f"PR #{number}" if number is not None else f"PR payload at index {index}"
        msg = f"{where} could not be parsed ({exc.error_count()} validation error(s))"
        raise ValueError(msg) from exc


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


async def fetch_pull_request(client: GitHubClient, config: Config, raw: GitHubPullRequest) -> PullRequest:
    """Fetch reviews and comments for one PR and build its record.

    Both fetches run concurrently and are awaited together.  A failed fetch
    contributes an empty list.
    """
    owner, repo = config.github.owner, config.github.repo
    reviews_result, comments_result = await asyncio.gather(
        client.list_reviews(owner, repo, raw.number),
        client.list_issue_comments(owner, repo, raw.number),
        return_exceptions=True,
    )

    reviews: list[GitHubReview] = []
    comments: list[GitHubIssueComment] = []
    if isinstance(reviews_result, GitHubError):
        logger.warning("Using empty reviews for PR #%s: %s", raw.number, reviews_result)
    elif isinstance(reviews_result, BaseException):
        raise reviews_result
    else:
        reviews = reviews_result

    if isinstance(comments_result, GitHubError):
        logger.warning("Using empty comments for PR #%s: %s", raw.number, comments_result)
    elif isinstance(comments_result, BaseException):
        raise comments_result
    else:
        comments = comments_result

    return build_pull_request(raw, reviews, comments)


async def aggregate_pull_requests(
    client: GitHubClient,
    config: Config,
    raw_prs: Sequence[Any],
) -> AggregationResult:
    """Build records for every parseable PR payload in *raw_prs*.

    Output order follows *raw_prs*. Unparseable payloads are left out and
    reported in ``failures``.
    """
    semaphore = asyncio.Semaphore(config.sync.max_concurrency)
    failures: list[str] = []
    parsed: list[GitHubPullRequest] = []

    for index, payload in enumerate(raw_prs):
        try:
            parsed.append(parse_pull_request(payload, index))
        except ValueError as exc:
            logger.warning("Excluding PR from listing: %s", exc)
            failures.append(str(exc))

    async def _bounded(raw: GitHubPullRequest) -> PullRequest:
        async with semaphore:
            return await fetch_pull_request(client, config, raw)

    pull_requests = await asyncio.gather(*(_bounded(raw) for raw in parsed))
    logger.info("Aggregated %d PRs (%d excluded)", len(pull_requests), len(failures))
    return AggregationResult(pull_requests=list(pull_requests), failures=failures)
