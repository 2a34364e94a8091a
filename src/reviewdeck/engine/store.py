"""Process-wide pull request collection.

The store is written in two ways only: the aggregation pipeline replaces the
whole collection, and the mutation coordinator updates a single record.  A
single-record update swaps in a ``model_copy`` of that record; every other
record keeps its identity.  Readers always get copies.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from reviewdeck.engine.status import is_locked
from reviewdeck.models import Role

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from reviewdeck.models import Comment, PullRequest, Review, ReviewStatus

    Listener = Callable[[list[PullRequest]], None]

logger = logging.getLogger(__name__)


class UnknownPullRequestError(KeyError):
    """Raised when a PR number is not in the collection."""

    def __init__(self, number: int) -> None:
        super().__init__(number)
        self.number = number

    def __str__(self) -> str:
        return f"PR #{self.number} is not in the current listing"


class PullRequestStore:
    """Pull requests addressable by number, in listing order."""

    __slots__ = ("_listeners", "_prs")

    def __init__(self, prs: Iterable[PullRequest] = ()) -> None:
        self._prs: dict[int, PullRequest] = {pr.number: pr for pr in prs}
        self._listeners: list[Listener] = []

    def __len__(self) -> int:
        return len(self._prs)

    def __contains__(self, number: object) -> bool:
        return number in self._prs

    # -- reads ---------------------------------------------------------------

    def snapshot(self) -> list[PullRequest]:
        """Return copies of every record, in listing order."""
        return [pr.model_copy(deep=True) for pr in self._prs.values()]

    def get(self, number: int) -> PullRequest:
        """Return a copy of one record.

        Raises:
            UnknownPullRequestError: If *number* is not in the collection.
        """
        return self._require(number).model_copy(deep=True)

    def role_of(self, number: int, user_id: int) -> Role | None:
        """Role *user_id* plays on PR *number*, or None if they take no part in it."""
        pr = self._prs.get(number)
        if pr is None:
            return None
        return pr.roles.get(user_id)

    # -- listeners -------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* with a fresh snapshot after every change.

        Returns a function that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        for listener in list(self._listeners):
            try:
                listener(self.snapshot())
            except Exception:
                logger.exception("Store listener failed")

    # -- writes ----------------------------------------------------------------

    def replace_all(self, prs: Iterable[PullRequest]) -> None:
        """Replace the whole collection with the output of one listing cycle."""
        self._prs = {pr.number: pr for pr in prs}
        logger.debug("Store replaced: %d PRs", len(self._prs))
        self._notify()

    def update(self, number: int, **changes: Any) -> PullRequest:
        """Swap PR *number* for a copy with *changes* applied.

        ``is_locked`` is always recomputed from the resulting state and status
        and cannot be passed in.

        Raises:
            UnknownPullRequestError: If *number* is not in the collection.
            ValueError: If *changes* include ``is_locked``.
        """
        if "is_locked" in changes:
            msg = "is_locked is derived from state and status and cannot be set directly"
            raise ValueError(msg)
        current = self._require(number)
        updated = current.model_copy(update=changes)
        updated = updated.model_copy(update={"is_locked": is_locked(updated.state, updated.status)})
        self._prs[number] = updated
        self._notify()
        return updated.model_copy(deep=True)

    def append_comment(self, number: int, comment: Comment) -> PullRequest:
        pr = self._require(number)
        return self.update(number, comments=[*pr.comments, comment])

    def remove_comment(self, number: int, comment_id: str) -> PullRequest:
        pr = self._require(number)
        return self.update(number, comments=[c for c in pr.comments if c.id != comment_id])

    def append_review(self, number: int, review: Review, status: ReviewStatus | None = None) -> PullRequest:
        """Append *review*, optionally setting a new status.

        The reviewer becomes a ``reviewer`` on the PR unless they are its author.
        """
        pr = self._require(number)
        changes: dict[str, Any] = {"reviews": [*pr.reviews, review]}
        if status is not None:
            changes["status"] = status
        if review.reviewer.id not in pr.roles:
            changes["roles"] = {**pr.roles, review.reviewer.id: Role.REVIEWER}
        return self.update(number, **changes)

    def remove_review(
        self,
        number: int,
        review_id: str,
        status: ReviewStatus,
        roles: dict[int, Role] | None = None,
    ) -> PullRequest:
        """Drop review *review_id* and restore *status* (and *roles*, when given).

        A record that no longer holds the review was replaced by a refresh and
        is left as it is.
        """
        pr = self._require(number)
        if not any(r.id == review_id for r in pr.reviews):
            logger.debug("Review %s is no longer on PR #%d; keeping the refreshed record", review_id, number)
            return pr.model_copy(deep=True)
        changes: dict[str, Any] = {"reviews": [r for r in pr.reviews if r.id != review_id], "status": status}
        if roles is not None:
            changes["roles"] = roles
        return self.update(number, **changes)

    def _require(self, number: int) -> PullRequest:
        try:
            return self._prs[number]
        except KeyError:
            raise UnknownPullRequestError(number) from None
