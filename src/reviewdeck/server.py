"""FastMCP server for reviewdeck.

Exposes tools for listing GitHub pull requests, reading their threaded
conversations and submitting comments and review decisions.  Local state is
updated optimistically and reconciled with GitHub in the background.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Literal

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_context
from fastmcp.server.lifespan import lifespan
from fastmcp.server.middleware.error_handling import ErrorHandlingMiddleware
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.server.middleware.timing import TimingMiddleware

from reviewdeck.config import get_config, get_config_path, load_config, mask_token, set_config
from reviewdeck.engine.mutations import PermissionDeniedError, PullRequestLockedError
from reviewdeck.engine.store import UnknownPullRequestError
from reviewdeck.github_api import GitHubError, RateLimitedError, UnauthorizedError, validate_token
from reviewdeck.models import (
    CommentThreadResult,
    ConfigInfo,
    MutationResult,
    PermissionsResult,
    PullRequestDetail,
    PullRequestList,
    RefreshResult,
    ReviewStatus,
)
from reviewdeck.service import ReviewSession, SessionNotReadyError
from reviewdeck.tools import actions, pulls

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from reviewdeck.config import Config

logger = logging.getLogger(__name__)


class _SessionState:
    """Holds the session shared by all tool calls."""

    __slots__ = ("session",)

    def __init__(self) -> None:
        self.session: ReviewSession | None = None


_state = _SessionState()


def get_session() -> ReviewSession:
    if _state.session is None:
        msg = "reviewdeck session not started"
        raise SessionNotReadyError(msg)
    return _state.session


def set_session(session: ReviewSession | None) -> None:
    _state.session = session


def check_prerequisites(config: Config) -> None:
    """Verify the repository is configured and a usable token was found."""
    gh = config.github
    if not (gh.owner and gh.repo):
        msg = "No repository configured. Run `reviewdeck init --owner <owner> --repo <repo>` or set RD_OWNER/RD_REPO."
        logger.error(msg)
        raise ValueError(msg)
    try:
        validate_token(gh.token)
    except UnauthorizedError:
        logger.exception("GitHub token missing or malformed")
        raise
    logger.info("Configured for %s/%s (token %s)", gh.owner, gh.repo, mask_token(gh.token))


@lifespan
async def start_session(server: FastMCP) -> AsyncIterator[dict[str, object] | None]:  # noqa: ARG001
    """Load config and open the review session for the server's lifetime."""
    config, config_path = load_config()
    set_config(config, config_path=config_path)
    check_prerequisites(config)
    session = ReviewSession(config)
    set_session(session)
    try:
        yield {}
    finally:
        await session.close()
        set_session(None)


mcp = FastMCP(
    "reviewdeck",
    lifespan=start_session,
    instructions="""\
reviewdeck reviews GitHub pull requests: list them, read their conversations,
comment, and approve / reject / request changes.

## Workflow

1. **Refresh**: `refresh_pull_requests()` loads every PR of the configured
   repository with its reviews and comments. Other tools refresh once on first
   use; call it again to pick up changes made elsewhere.
2. **Find work**: `list_pull_requests(filter="needs_review")` shows PRs you are
   assigned to and have not reviewed. `filter="mine"` shows PRs you opened.
3. **Inspect**: `get_pull_request(pr_number)` returns the PR and what you may do
   on it; `get_comment_thread(pr_number)` returns the threaded conversation.
4. **Act**: `submit_comment` and `submit_review` update local state at once and
   then write to GitHub. If GitHub rejects the write, the local change is undone
   and the result carries an `error`.

## Status and locking

Each PR has one status: pending, approved, rejected, changes_requested, merged
or closed. Only each reviewer's latest review counts; a rejection outweighs a
change request, which outweighs an approval. Approved, rejected, merged and
closed PRs are **locked**: no more comments or reviews. Requesting changes does
not lock.

## Permissions

- Assigned reviewers who have not reviewed yet may review.
- The author, assigned reviewers and anyone who already reviewed may comment.
- Authors can only comment on their own PRs, never review them.

Check `get_permissions(pr_number)` before acting instead of retrying blocked calls.
""",
)


def _recovery_error(  # noqa: PLR0911
    exc: BaseException,
    *,
    tool_name: str,
    pr_number: int | None = None,
) -> str:
    """Build an actionable error message with recovery hints."""
    msg = str(exc)

    if isinstance(exc, UnauthorizedError):
        return f"{tool_name} failed: {msg}"
    if isinstance(exc, RateLimitedError):
        return f"{tool_name} failed: GitHub API rate limit hit. Wait 60 seconds and retry."
    if isinstance(exc, UnknownPullRequestError):
        return f"{tool_name} failed: {msg}. Call refresh_pull_requests() and check the PR number."
    if isinstance(exc, PullRequestLockedError):
        return f"{tool_name} blocked: {msg}. Locked PRs accept no further comments or reviews; do not retry."
    if isinstance(exc, PermissionDeniedError):
        return f"{tool_name} blocked: {msg}. Call get_permissions({exc.number}) to see what is allowed; do not retry."
    if isinstance(exc, SessionNotReadyError):
        return f"{tool_name} failed: {msg}. Check the token and repository with show_config()."
    if isinstance(exc, ValueError):
        return f"{tool_name} failed: {msg}"
    if isinstance(exc, GitHubError):
        return f"{tool_name} failed: {msg}. This may be a transient issue; retry once."

    parts = [f"{tool_name} failed: {msg}."]
    if pr_number:
        parts.append(f"Verify PR #{pr_number} exists.")
    return " ".join(parts)


mcp.add_middleware(ErrorHandlingMiddleware(include_traceback=True, transform_errors=True))
mcp.add_middleware(TimingMiddleware())
mcp.add_middleware(LoggingMiddleware(include_payloads=True, max_payload_length=500))


@mcp.tool(tags={"command"})
async def refresh_pull_requests() -> RefreshResult:
    """Reload all pull requests with their reviews and comments from GitHub.

    On failure the previously loaded pull requests stay available and the result
    carries an ``error`` message.

    Returns:
        Whether the reload succeeded, how many PRs are loaded, and any PRs that
        were skipped because GitHub returned data that could not be read.
    """
    try:
        return await pulls.refresh_pull_requests(get_session(), ctx=get_context())
    except Exception as exc:
        logger.exception("refresh_pull_requests failed")
        return RefreshResult(ok=False, error=_recovery_error(exc, tool_name="refresh_pull_requests"))
    except asyncio.CancelledError:
        logger.warning("refresh_pull_requests cancelled")
        return RefreshResult(ok=False, error="Cancelled")


@mcp.tool(tags={"query", "discovery"})
async def list_pull_requests(
    filter: Literal["all", "mine", "needs_review"] = "all",  # noqa: A002
    statuses: list[ReviewStatus] | None = None,
) -> PullRequestList:
    """List pull requests, most recently active first.

    Present the result as a table: number, title, author, status label and
    whether the PR is locked. Mention the status breakdown as a summary line.

    Args:
        filter: "all", "mine" (PRs you opened) or "needs_review" (PRs you are
            assigned to and have not reviewed yet).
        statuses: Only include PRs with one of these statuses.

    Returns:
        Matching PR summaries plus a count of PRs per status.
    """
    try:
        return await pulls.list_pull_requests(get_session(), filter, statuses, ctx=get_context())
    except Exception as exc:
        logger.exception("list_pull_requests failed")
        return PullRequestList(error=_recovery_error(exc, tool_name="list_pull_requests"))
    except asyncio.CancelledError:
        logger.warning("list_pull_requests cancelled")
        return PullRequestList(error="Cancelled")


@mcp.tool(tags={"query"})
async def get_pull_request(pr_number: int) -> PullRequestDetail:
    """Get one pull request with its reviews, comments and your permissions on it.

    Args:
        pr_number: The PR number.
    """
    try:
        return await pulls.get_pull_request(get_session(), pr_number)
    except Exception as exc:
        logger.exception("get_pull_request failed for PR #%s", pr_number)
        return PullRequestDetail(error=_recovery_error(exc, tool_name="get_pull_request", pr_number=pr_number))


@mcp.tool(tags={"query"})
async def get_permissions(pr_number: int) -> PermissionsResult:
    """Check whether you may comment on or review a pull request right now.

    Args:
        pr_number: The PR number.
    """
    try:
        return await pulls.get_permissions(get_session(), pr_number)
    except Exception as exc:
        logger.exception("get_permissions failed for PR #%s", pr_number)
        return PermissionsResult(pr_number=pr_number, error=_recovery_error(exc, tool_name="get_permissions", pr_number=pr_number))


@mcp.tool(tags={"query"})
async def get_comment_thread(pr_number: int) -> CommentThreadResult:
    """Get the threaded conversation of a pull request.

    Top-level comments come in posting order, each with its nested replies.
    Review texts appear as comments.

    Args:
        pr_number: The PR number.
    """
    try:
        return await pulls.get_comment_thread(get_session(), pr_number)
    except Exception as exc:
        logger.exception("get_comment_thread failed for PR #%s", pr_number)
        return CommentThreadResult(pr_number=pr_number, error=_recovery_error(exc, tool_name="get_comment_thread", pr_number=pr_number))


@mcp.tool(tags={"command"})
async def submit_comment(
    pr_number: int,
    content: str,
    parent_id: str | None = None,
) -> MutationResult:
    """Post a comment on a pull request.

    The comment appears locally at once. If GitHub rejects it, it is removed again
    and the result carries an ``error``.

    Args:
        pr_number: The PR number.
        content: Comment text.
        parent_id: Id of the comment this one replies to, from ``get_comment_thread``.
    """
    try:
        return await actions.submit_comment(get_session(), pr_number, content, parent_id, ctx=get_context())
    except Exception as exc:
        logger.exception("submit_comment failed for PR #%s", pr_number)
        return MutationResult(pr_number=pr_number, error=_recovery_error(exc, tool_name="submit_comment", pr_number=pr_number))


@mcp.tool(tags={"command"})
async def submit_review(
    pr_number: int,
    decision: Literal["approve", "reject", "request_changes", "comment"],
    body: str | None = None,
) -> MutationResult:
    """Submit a review decision on a pull request.

    ``approve`` and ``reject`` lock the PR; ``request_changes`` does not;
    ``comment`` posts ``body`` as a review without changing the status.

    Args:
        pr_number: The PR number.
        decision: approve, reject, request_changes or comment.
        body: Review text. Required for ``comment``.
    """
    try:
        return await actions.submit_review(get_session(), pr_number, decision, body, ctx=get_context())
    except Exception as exc:
        logger.exception("submit_review failed for PR #%s", pr_number)
        return MutationResult(pr_number=pr_number, error=_recovery_error(exc, tool_name="submit_review", pr_number=pr_number))


@mcp.tool(tags={"discovery"})
def show_config() -> ConfigInfo:
    """Show the active reviewdeck configuration (token masked)."""
    path = get_config_path()
    return ConfigInfo(
        config=get_config().masked_dump(),
        source=str(path) if path else "defaults",
    )


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


@mcp.prompt
def review_queue() -> str:
    """Work through the pull requests waiting for your review."""
    return """\
You are working through the pull requests waiting for the user's review. Follow these steps:

1. **Refresh**: call `refresh_pull_requests()`. If it returns an error, report it and stop.

2. **Queue**: call `list_pull_requests(filter="needs_review")`. If nothing matches,
   say so and stop.

3. **For each PR**, oldest activity last:
   - Call `get_pull_request(pr_number)` and `get_comment_thread(pr_number)`.
   - Summarize the description and the open discussion points.
   - Ask the user for a decision: approve, reject, request changes, or comment.

4. **Act**: call `submit_review` with the decision (or `submit_comment` for a reply,
   passing `parent_id`). If the result has an `error`, report it; the change was undone.

5. **Wrap up**: call `list_pull_requests()` and report the status breakdown.
"""
