"""MCP tools for posting comments and submitting reviews."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from reviewdeck.engine.store import UnknownPullRequestError
from reviewdeck.models import MutationResult, MutationState

if TYPE_CHECKING:
    from fastmcp.server.context import Context

    from reviewdeck.engine.mutations import PendingMutation
    from reviewdeck.models import ReviewDecision
    from reviewdeck.service import ReviewSession

logger = logging.getLogger(__name__)


async def _settle(
    session: ReviewSession,
    mutation: PendingMutation,
    *,
    wait: bool,
    ctx: Context | None = None,
) -> MutationResult:
    if wait:
        await mutation.wait()

    status = is_locked = None
    try:
        pr = session.get(mutation.pr_number)
    except UnknownPullRequestError:
        logger.debug("PR #%d left the listing while the write was in flight", mutation.pr_number)
    else:
        status, is_locked = pr.status, pr.is_locked

    if ctx:
        if mutation.state is MutationState.ROLLED_BACK:
            await ctx.warning(f"⚠️ {mutation.kind} on PR #{mutation.pr_number} was rolled back: {mutation.error}")
        elif mutation.state is MutationState.CONFIRMED:
            await ctx.info(f"{mutation.kind.capitalize()} on PR #{mutation.pr_number} confirmed by GitHub")

    error = None
    if mutation.state is MutationState.ROLLED_BACK:
        error = f"GitHub rejected the {mutation.kind}; the local change was undone: {mutation.error}"
    return MutationResult(
        mutation_id=mutation.id,
        pr_number=mutation.pr_number,
        state=mutation.state,
        status=status,
        is_locked=is_locked,
        error=error,
    )


async def submit_comment(
    session: ReviewSession,
    pr_number: int,
    content: str,
    parent_id: str | None = None,
    *,
    wait: bool = True,
    ctx: Context | None = None,
) -> MutationResult:
    """Post a comment optimistically; with *wait*, report the remote outcome too."""
    await session.ensure_loaded()
    mutation = await session.submit_comment(pr_number, content, parent_id)
    return await _settle(session, mutation, wait=wait, ctx=ctx)


async def submit_review(
    session: ReviewSession,
    pr_number: int,
    decision: ReviewDecision | str,
    body: str | None = None,
    *,
    wait: bool = True,
    ctx: Context | None = None,
) -> MutationResult:
    """Submit a review decision optimistically; with *wait*, report the remote outcome too."""
    await session.ensure_loaded()
    mutation = await session.submit_review(pr_number, decision, body)
    return await _settle(session, mutation, wait=wait, ctx=ctx)
