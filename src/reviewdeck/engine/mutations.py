"""Optimistic comment and review submission.

A submission updates the store immediately and then writes to GitHub in a
background task.  Every submission is tracked as a :class:`PendingMutation`
that moves ``issued`` → ``confirmed`` on success, or ``issued`` → ``failed`` →
``rolled_back`` when the remote write fails and the local change is undone.

Submissions on the same PR are serialized with a per-PR ``asyncio.Lock`` that
is held until the remote outcome has been applied, so every submission starts
from settled local state.  A lock is dropped once no submission holds or
awaits it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from reviewdeck.engine.permissions import evaluate_permissions
from reviewdeck.engine.store import UnknownPullRequestError
from reviewdeck.github_api import GitHubError
from reviewdeck.models import Comment, MutationState, Review, ReviewDecision, ReviewStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from reviewdeck.config import Config
    from reviewdeck.engine.store import PullRequestStore
    from reviewdeck.github_api import GitHubClient
    from reviewdeck.models import PullRequest, User

logger = logging.getLogger(__name__)

__all__ = [
    "MutationCoordinator",
    "PendingMutation",
    "PermissionDeniedError",
    "PullRequestLockedError",
    "UnknownPullRequestError",
]

REJECTION_BODY = "This PR has been rejected."

_DECISION_STATUS: dict[ReviewDecision, ReviewStatus | None] = {
    ReviewDecision.APPROVE: ReviewStatus.APPROVED,
    ReviewDecision.REJECT: ReviewStatus.REJECTED,
    ReviewDecision.REQUEST_CHANGES: ReviewStatus.CHANGES_REQUESTED,
    ReviewDecision.COMMENT: None,
}

_DECISION_EVENT: dict[ReviewDecision, str] = {
    ReviewDecision.APPROVE: "APPROVE",
    ReviewDecision.REJECT: "REQUEST_CHANGES",
    ReviewDecision.REQUEST_CHANGES: "REQUEST_CHANGES",
    ReviewDecision.COMMENT: "COMMENT",
}


class PullRequestLockedError(Exception):
    """Raised when a PR no longer accepts comments or reviews."""

    def __init__(self, number: int, status: ReviewStatus) -> None:
        super().__init__(f"PR #{number} is locked ({status.display_name})")
        self.number = number
        self.status = status


class PermissionDeniedError(Exception):
    """Raised when the acting user may not perform the action on the PR."""

    def __init__(self, number: int, login: str, action: str) -> None:
        super().__init__(f"{login} may not {action} on PR #{number}")
        self.number = number
        self.login = login
        self.action = action


class PendingMutation:
    """Tracks one optimistic submission until its remote write settles."""

    __slots__ = ("_done", "created_at", "decision", "error", "id", "item_id", "kind", "pr_number", "state")

    def __init__(self, pr_number: int, kind: str, decision: ReviewDecision | None = None) -> None:
        self.id = uuid4().hex
        self.pr_number = pr_number
        self.kind = kind
        self.decision = decision
        self.item_id = f"local-{self.id[:12]}"
        self.created_at = datetime.now(UTC)
        self.state = MutationState.ISSUED
        self.error: str | None = None
        self._done = asyncio.Event()

    def __repr__(self) -> str:
        return f"PendingMutation(pr={self.pr_number}, kind={self.kind!r}, state={self.state.value})"

    @property
    def settled(self) -> bool:
        return self._done.is_set()

    async def wait(self) -> MutationState:
        """Wait for the remote outcome and return the final state."""
        await self._done.wait()
        return self.state


class MutationCoordinator:
    """Applies comments and reviews optimistically and reconciles them with GitHub."""

    def __init__(self, store: PullRequestStore, client: GitHubClient, config: Config) -> None:
        self._store = store
        self._client = client
        self._owner = config.github.owner
        self._repo = config.github.repo
        self._locks: dict[int, asyncio.Lock] = {}
        self._waiting: defaultdict[int, int] = defaultdict(int)
        self._tasks: set[asyncio.Task[None]] = set()
        self.history: list[PendingMutation] = []

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def failures(self) -> list[PendingMutation]:
        """Mutations whose remote write failed, oldest first."""
        return [m for m in self.history if m.error is not None]

    # -- public actions --------------------------------------------------------

    async def submit_comment(
        self,
        pr_number: int,
        content: str,
        author: User,
        parent_id: str | None = None,
    ) -> PendingMutation:
        """Post a comment (optionally a reply to *parent_id*) on *pr_number*.

        Raises:
            UnknownPullRequestError: If the PR is not in the store.
            PullRequestLockedError: If the PR is locked.
            PermissionDeniedError: If *author* may not comment on the PR.
            ValueError: If *content* is blank.
        """
        lock = await self._acquire(pr_number)
        try:
            pr = self._store.get(pr_number)
            self._check_open(pr)
            if not evaluate_permissions(author, pr).can_comment:
                raise PermissionDeniedError(pr_number, author.login, "comment")
            if not content.strip():
                msg = "Comment content must not be empty"
                raise ValueError(msg)
            content = content.strip()

            mutation = PendingMutation(pr_number, "comment")
            comment = Comment(
                id=mutation.item_id,
                content=content,
                author=author,
                created_at=mutation.created_at,
                parent_id=parent_id,
            )
            self._store.append_comment(pr_number, comment)
            logger.info("Comment %s issued on PR #%d", mutation.item_id, pr_number)

            def rollback() -> None:
                self._store.remove_comment(pr_number, comment.id)

            self._start(
                mutation,
                self._client.create_comment(self._owner, self._repo, pr_number, content),
                rollback,
                lock,
            )
        except BaseException:
            self._release(pr_number, lock)
            raise
        return mutation

    async def submit_review(
        self,
        pr_number: int,
        decision: ReviewDecision | str,
        author: User,
        body: str | None = None,
    ) -> PendingMutation:
        """Submit a review decision on *pr_number*.

        Approve and reject lock the PR immediately; request-changes does not.
        A ``comment`` decision carries *body* and leaves the status unchanged.

        Raises:
            UnknownPullRequestError: If the PR is not in the store.
            PullRequestLockedError: If the PR is locked.
            PermissionDeniedError: If *author* may not review the PR.
            ValueError: If a ``comment`` decision has no body.
        """
        decision = ReviewDecision(decision)
        lock = await self._acquire(pr_number)
        try:
            pr = self._store.get(pr_number)
            self._check_open(pr)
            if not evaluate_permissions(author, pr).can_review_pr:
                raise PermissionDeniedError(pr_number, author.login, "review")
            if decision is ReviewDecision.COMMENT and not (body and body.strip()):
                msg = "A comment review needs a body"
                raise ValueError(msg)
            if decision is ReviewDecision.REJECT and not body:
                body = REJECTION_BODY

            mutation = PendingMutation(pr_number, "review", decision)
            new_status = _DECISION_STATUS[decision]
            review = Review(
                id=mutation.item_id,
                reviewer=author,
                status=new_status or ReviewStatus.PENDING,
                body=body or None,
                submitted_at=mutation.created_at,
            )
            previous_status, previous_roles = pr.status, pr.roles
            self._store.append_review(pr_number, review, new_status)
            if body:
                self._store.append_comment(
                    pr_number,
                    Comment(id=review.id, content=body, author=author, created_at=review.submitted_at),
                )
            logger.info("Review %s (%s) issued on PR #%d", mutation.item_id, decision.value, pr_number)

            def rollback() -> None:
                self._store.remove_review(pr_number, review.id, previous_status, previous_roles)
                if body:
                    self._store.remove_comment(pr_number, review.id)

            self._start(
                mutation,
                self._client.create_review(self._owner, self._repo, pr_number, _DECISION_EVENT[decision], body),
                rollback,
                lock,
            )
        except BaseException:
            self._release(pr_number, lock)
            raise
        return mutation

    async def drain(self) -> None:
        """Wait until every in-flight remote write has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- internals -------------------------------------------------------------

    async def _acquire(self, pr_number: int) -> asyncio.Lock:
        lock = self._locks.setdefault(pr_number, asyncio.Lock())
        self._waiting[pr_number] += 1
        try:
            await lock.acquire()
        finally:
            self._waiting[pr_number] -= 1
            if not self._waiting[pr_number]:
                del self._waiting[pr_number]
                if not lock.locked() and self._locks.get(pr_number) is lock:
                    del self._locks[pr_number]
        return lock

    def _release(self, pr_number: int, lock: asyncio.Lock) -> None:
        """Release *lock* and forget it once no submission holds or awaits it."""
        lock.release()
        if pr_number not in self._waiting and self._locks.get(pr_number) is lock:
            del self._locks[pr_number]

    @staticmethod
    def _check_open(pr: PullRequest) -> None:
        if pr.is_locked:
            raise PullRequestLockedError(pr.number, pr.status)

    def _start(
        self,
        mutation: PendingMutation,
        write: Awaitable[Any],
        rollback: Callable[[], None],
        lock: asyncio.Lock,
    ) -> None:
        self.history.append(mutation)
        task = asyncio.create_task(self._settle(mutation, write, rollback, lock))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _settle(
        self,
        mutation: PendingMutation,
        write: Awaitable[Any],
        rollback: Callable[[], None],
        lock: asyncio.Lock,
    ) -> None:
        try:
            await write
        except GitHubError as exc:
            logger.warning("%s write failed on PR #%d: %s", mutation.kind.capitalize(), mutation.pr_number, exc)
            self._fail(mutation, str(exc), rollback)
        except Exception as exc:
            logger.exception("%s write crashed on PR #%d", mutation.kind.capitalize(), mutation.pr_number)
            self._fail(mutation, f"{type(exc).__name__}: {exc}", rollback)
        except asyncio.CancelledError:
            self._fail(mutation, "cancelled", rollback)
            raise
        else:
            mutation.state = MutationState.CONFIRMED
            logger.info("%s %s confirmed on PR #%d", mutation.kind.capitalize(), mutation.item_id, mutation.pr_number)
        finally:
            mutation._done.set()
            self._release(mutation.pr_number, lock)

    def _fail(self, mutation: PendingMutation, error: str, rollback: Callable[[], None]) -> None:
        mutation.state = MutationState.FAILED
        mutation.error = error
        try:
            rollback()
        except UnknownPullRequestError:
            logger.info("PR #%d left the listing before rollback; nothing to undo", mutation.pr_number)
        mutation.state = MutationState.ROLLED_BACK
        logger.info("%s %s rolled back on PR #%d", mutation.kind.capitalize(), mutation.item_id, mutation.pr_number)
