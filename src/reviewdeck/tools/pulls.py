"""MCP tools for listing and inspecting pull requests."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from reviewdeck.models import (
    CommentThreadResult,
    PermissionsResult,
    PullRequestDetail,
    PullRequestList,
    PullRequestSummary,
    RefreshResult,
)
from reviewdeck.service import status_breakdown

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fastmcp.server.context import Context

    from reviewdeck.models import PullRequest, ReviewStatus
    from reviewdeck.service import PullRequestFilter, ReviewSession

logger = logging.getLogger(__name__)


def summarize(pr: PullRequest) -> PullRequestSummary:
    """Compact listing row for one PR."""
    return PullRequestSummary(
        number=pr.number,
        title=pr.title,
        author=pr.author.login,
        status=pr.status,
        is_locked=pr.is_locked,
        reviewers=[u.login for u in pr.assigned_reviewers],
        comment_count=len(pr.comments),
        review_count=len(pr.reviews),
        last_activity=pr.last_activity,
    )


async def refresh_pull_requests(session: ReviewSession, ctx: Context | None = None) -> RefreshResult:
    """Run one listing cycle against GitHub."""
    if ctx:
        await ctx.info(f"Refreshing pull requests for {session.repo_slug}")
    result = await session.refresh()
    if ctx:
        if result.ok:
            await ctx.info(f"Loaded {result.count} PR(s)")
            if result.excluded:
                await ctx.warning(f"⚠️ {len(result.excluded)} PR(s) could not be parsed and were skipped")
        else:
            await ctx.warning(f"Refresh failed: {result.error}")
    return result


async def list_pull_requests(
    session: ReviewSession,
    filter_mode: PullRequestFilter = "all",
    statuses: Iterable[ReviewStatus | str] | None = None,
    ctx: Context | None = None,
) -> PullRequestList:
    """List PRs, most recently active first, with a per-status breakdown."""
    await session.ensure_loaded()
    prs = session.pull_requests(filter_mode, statuses)
    prs.sort(key=lambda pr: pr.last_activity, reverse=True)
    if ctx:
        await ctx.info(f"{len(prs)} PR(s) match filter '{filter_mode}'")
    return PullRequestList(
        pull_requests=[summarize(pr) for pr in prs],
        status_breakdown=status_breakdown(prs),
    )


async def get_pull_request(session: ReviewSession, pr_number: int) -> PullRequestDetail:
    await session.ensure_loaded()
    return PullRequestDetail(
        pull_request=session.get(pr_number),
        permissions=session.permissions_for(pr_number),
    )


async def get_permissions(session: ReviewSession, pr_number: int) -> PermissionsResult:
    await session.ensure_loaded()
    user = session.require_user()
    return PermissionsResult(
        pr_number=pr_number,
        user=user.login,
        role=session.role_of(pr_number, user),
        permissions=session.permissions_for(pr_number, user),
    )


async def get_comment_thread(session: ReviewSession, pr_number: int) -> CommentThreadResult:
    """Threaded conversation of one PR, rebuilt on every call."""
    await session.ensure_loaded()
    return CommentThreadResult(pr_number=pr_number, threads=session.comment_tree(pr_number))
