"""Per-user permissions on a pull request.

Permissions depend on the PR's current reviews and lock flag, which change
within a session as reviews are submitted, so they are computed on every call
and never stored.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from reviewdeck.models import Permissions

if TYPE_CHECKING:
    from collections.abc import Sequence

    from reviewdeck.models import PullRequest, User


def evaluate_permissions(
    user: User,
    pr: PullRequest,
    assigned_reviewers: Sequence[User] | None = None,
) -> Permissions:
    """Compute what *user* may do on *pr*.

    Args:
        user: The acting user.
        pr: The pull request.
        assigned_reviewers: Reviewers requested on the PR. Defaults to
            ``pr.assigned_reviewers``.
    """
    reviewers = pr.assigned_reviewers if assigned_reviewers is None else assigned_reviewers
    is_assigned = any(r.id == user.id for r in reviewers)
    is_author = pr.is_author(user.id)
    has_reviewed = pr.has_reviewed(user.id)
    open_for_input = not pr.is_locked

    return Permissions(
        can_review_pr=is_assigned and not has_reviewed and open_for_input,
        can_comment=open_for_input and (is_author or is_assigned or has_reviewed),
        can_only_comment=is_author and open_for_input,
    )
