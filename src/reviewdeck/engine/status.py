"""Canonical review status and lock derivation."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from reviewdeck.models import RawState, ReviewStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from reviewdeck.models import Review

# Statuses that freeze discussion on a PR.
LOCKING_STATUSES = frozenset({
    ReviewStatus.MERGED,
    ReviewStatus.CLOSED,
    ReviewStatus.APPROVED,
    ReviewStatus.REJECTED,
})

# Conflict resolution across reviewers, most decisive first.
_DECISION_PRIORITY = (
    ReviewStatus.REJECTED,
    ReviewStatus.CHANGES_REQUESTED,
    ReviewStatus.APPROVED,
)

_OLDEST = datetime.min.replace(tzinfo=UTC)


def _sort_key(stamp: datetime | None) -> datetime:
    if stamp is None:
        return _OLDEST
    if stamp.tzinfo is None:
        return stamp.replace(tzinfo=UTC)
    return stamp


def latest_reviews(reviews: Iterable[Review]) -> list[Review]:
    """Reduce reviews to the latest one per reviewer.

    Reviews are ordered by ``(submitted_at, position in input)``, so when one
    reviewer has two reviews with the same timestamp the one that appears later
    in *reviews* wins.  Result order follows each reviewer's first appearance.
    """
    latest: dict[int, tuple[tuple[datetime, int], Review]] = {}
    for position, review in enumerate(reviews):
        key = (_sort_key(review.submitted_at), position)
        current = latest.get(review.reviewer.id)
        if current is None or key > current[0]:
            latest[review.reviewer.id] = (key, review)
    return [review for _, review in latest.values()]


def resolve_status(state: RawState | str, merged: bool | None, reviews: Sequence[Review]) -> ReviewStatus:
    """Derive the canonical status of a PR.

    Closed PRs are ``merged`` or ``closed`` regardless of their reviews.  For
    open PRs only each reviewer's latest review counts, and rejection beats
    changes-requested, which beats approval.
    """
    if RawState(state) is RawState.CLOSED:
        return ReviewStatus.MERGED if merged is True else ReviewStatus.CLOSED

    if not reviews:
        return ReviewStatus.PENDING

    decided = {review.status for review in latest_reviews(reviews)}
    for status in _DECISION_PRIORITY:
        if status in decided:
            return status
    return ReviewStatus.PENDING


def is_locked(state: RawState | str, status: ReviewStatus) -> bool:
    """Whether comments and reviews are blocked for a PR in this state."""
    return RawState(state) is RawState.CLOSED or status in LOCKING_STATUSES
