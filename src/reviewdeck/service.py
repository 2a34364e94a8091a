"""Review session: one signed-in user, one repository, one PR collection.

:class:`ReviewSession` ties the GitHub client, the PR store and the mutation
coordinator together and is what the MCP tools and the CLI talk to.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from reviewdeck.engine.aggregate import aggregate_pull_requests
from reviewdeck.engine.mutations import MutationCoordinator
from reviewdeck.engine.permissions import evaluate_permissions
from reviewdeck.engine.store import PullRequestStore
from reviewdeck.engine.threads import build_comment_tree
from reviewdeck.github_api import (
    DecodeFailureError,
    GitHubClient,
    GitHubError,
    NetworkFailureError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
)
from reviewdeck.models import RefreshResult, ReviewStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from reviewdeck.config import Config
    from reviewdeck.engine.mutations import PendingMutation
    from reviewdeck.models import CommentNode, Permissions, PullRequest, ReviewDecision, Role, User

logger = logging.getLogger(__name__)

PullRequestFilter = Literal["all", "mine", "needs_review"]


class SessionNotReadyError(RuntimeError):
    """Raised when an action needs the current user before the first successful refresh."""

    def __init__(self, reason: str = "") -> None:
        msg = "No signed-in user yet - refresh the pull request list first"
        super().__init__(f"{msg}: {reason}" if reason else msg)


def describe_error(exc: BaseException, *, owner: str = "", repo: str = "") -> str:
    """Turn a listing failure into one human-readable message."""
    target = f"{owner}/{repo}" if owner and repo else "the repository"
    if isinstance(exc, UnauthorizedError):
        return str(exc)
    if isinstance(exc, RateLimitedError):
        return str(exc)
    if isinstance(exc, NotFoundError):
        return f"Could not find {target} - check the owner and repository name ({exc})"
    if isinstance(exc, DecodeFailureError):
        return f"GitHub returned data reviewdeck could not read: {exc}"
    if isinstance(exc, NetworkFailureError):
        return f"Could not reach GitHub: {exc.detail}"
    if isinstance(exc, GitHubError):
        return str(exc)
    return f"Unexpected error: {type(exc).__name__}: {exc}"


def status_breakdown(prs: Iterable[PullRequest]) -> dict[str, int]:
    """Count PRs per status, in status declaration order, omitting zero counts."""
    counts = dict.fromkeys(ReviewStatus, 0)
    for pr in prs:
        counts[pr.status] += 1
    return {status.value: n for status, n in counts.items() if n}


class ReviewSession:
    """The engine as seen by one user working on one repository."""

    def __init__(
        self,
        config: Config,
        *,
        client: GitHubClient | None = None,
        store: PullRequestStore | None = None,
    ) -> None:
        self.config = config
        self.client = client or GitHubClient(config)
        self.store = store or PullRequestStore()
        self.coordinator = MutationCoordinator(self.store, self.client, config)
        self.current_user: User | None = None
        self.last_error: str | None = None

    @property
    def repo_slug(self) -> str:
        return f"{self.config.github.owner}/{self.config.github.repo}"

    # -- listing cycle -----------------------------------------------------------

    async def refresh(self) -> RefreshResult:
        """Run one listing cycle and replace the collection.

        The current user is fetched first; if that fails the cycle stops there.
        On any listing-level failure the previous collection is left untouched.
        """
        gh = self.config.github
        try:
            me = await self.client.get_current_user()
            self.current_user = me.to_user()
            raw_prs = await self.client.list_pull_requests(gh.owner, gh.repo, state=self.config.sync.pr_state)
        except GitHubError as exc:
            message = describe_error(exc, owner=gh.owner, repo=gh.repo)
            logger.warning("Refresh of %s failed: %s", self.repo_slug, message)
            self.last_error = message
            return RefreshResult(ok=False, count=len(self.store), error=message)

        result = await aggregate_pull_requests(self.client, self.config, raw_prs)
        self.store.replace_all(result.pull_requests)
        self.last_error = None
        logger.info("Refreshed %s as %s: %d PRs", self.repo_slug, self.current_user.login, len(self.store))
        return RefreshResult(ok=True, count=len(self.store), excluded=result.failures)

    async def ensure_loaded(self) -> None:
        """Refresh once if no cycle has succeeded yet.

        Raises:
            SessionNotReadyError: If that refresh fails.
        """
        if self.current_user is not None:
            return
        result = await self.refresh()
        if not result.ok:
            raise SessionNotReadyError(result.error or "")

    def require_user(self) -> User:
        if self.current_user is None:
            raise SessionNotReadyError
        return self.current_user

    # -- views ---------------------------------------------------------------------

    def pull_requests(
        self,
        filter_mode: PullRequestFilter = "all",
        statuses: Iterable[ReviewStatus | str] | None = None,
    ) -> list[PullRequest]:
        """Return PRs matching *filter_mode* and, optionally, one of *statuses*.

        ``mine`` keeps PRs the current user opened; ``needs_review`` keeps PRs the
        current user is assigned to and has not reviewed yet.
        """
        prs = self.store.snapshot()
        if filter_mode != "all":
            user = self.require_user()
            if filter_mode == "mine":
                prs = [pr for pr in prs if pr.is_author(user.id)]
            elif filter_mode == "needs_review":
                prs = [pr for pr in prs if pr.is_assigned(user.id) and not pr.has_reviewed(user.id)]
            else:
                msg = f"Unknown filter {filter_mode!r} (expected all, mine or needs_review)"
                raise ValueError(msg)
        if statuses:
            wanted = {ReviewStatus(s) for s in statuses}
            prs = [pr for pr in prs if pr.status in wanted]
        return prs

    def get(self, pr_number: int) -> PullRequest:
        return self.store.get(pr_number)

    def permissions_for(self, pr_number: int, user: User | None = None) -> Permissions:
        """Permissions of *user* (default: the current user) on *pr_number*, computed now."""
        return evaluate_permissions(user or self.require_user(), self.store.get(pr_number))

    def role_of(self, pr_number: int, user: User | None = None) -> Role | None:
        return self.store.role_of(pr_number, (user or self.require_user()).id)

    def comment_tree(self, pr_number: int) -> list[CommentNode]:
        return build_comment_tree(self.store.get(pr_number).comments)

    # -- actions -------------------------------------------------------------------

    async def submit_comment(self, pr_number: int, content: str, parent_id: str | None = None) -> PendingMutation:
        return await self.coordinator.submit_comment(pr_number, content, self.require_user(), parent_id)

    async def submit_review(
        self,
        pr_number: int,
        decision: ReviewDecision | str,
        body: str | None = None,
    ) -> PendingMutation:
        return await self.coordinator.submit_review(pr_number, decision, self.require_user(), body)

    async def close(self) -> None:
        """Wait for in-flight remote writes before shutting down."""
        await self.coordinator.drain()
