"""Raw GitHub REST payloads and their conversion to reviewdeck models.

Only the fields reviewdeck uses are declared; everything else in the
payload is ignored.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reviewdeck.models import Comment, RawState, Review, ReviewStatus, User


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GitHubUser(_Payload):
    id: int
    login: str
    avatar_url: str | None = None
    type: str | None = None

    def to_user(self) -> User:
        return User(id=self.id, login=self.login, avatar_url=self.avatar_url)


class GitHubBranch(_Payload):
    ref: str
    label: str = ""
    sha: str = ""


class GitHubPullRequest(_Payload):
    id: int
    number: int
    title: str
    body: str | None = None
    user: GitHubUser
    state: RawState
    created_at: datetime
    updated_at: datetime
    assignees: list[GitHubUser] | None = None
    requested_reviewers: list[GitHubUser] | None = None
    head: GitHubBranch
    base: GitHubBranch
    merged: bool | None = None
    merged_at: datetime | None = None
    closed_at: datetime | None = None

    @field_validator("state", mode="before")
    @classmethod
    def _lower_state(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    @property
    def is_merged(self) -> bool:
        """GitHub's list endpoint omits ``merged``; ``merged_at`` is always present."""
        return self.merged is True or self.merged_at is not None


# Raw review states → canonical review status. Anything unlisted
# (COMMENTED, PENDING) counts as pending.
_REVIEW_STATE_MAP: dict[str, ReviewStatus] = {
    "approved": ReviewStatus.APPROVED,
    "rejected": ReviewStatus.REJECTED,
    "dismissed": ReviewStatus.REJECTED,
    "changes_requested": ReviewStatus.CHANGES_REQUESTED,
}


def review_status_from_raw(state: str) -> ReviewStatus:
    """Map a GitHub review ``state`` string to a :class:`ReviewStatus`."""
    return _REVIEW_STATE_MAP.get(state.lower(), ReviewStatus.PENDING)


class GitHubReview(_Payload):
    id: int
    user: GitHubUser
    body: str | None = None
    state: str
    submitted_at: datetime | None = None

    @property
    def status(self) -> ReviewStatus:
        return review_status_from_raw(self.state)

    def to_review(self) -> Review | None:
        """Convert to a :class:`Review`; reviews never submitted yield None."""
        if self.submitted_at is None:
            return None
        return Review(
            id=f"review-{self.id}",
            reviewer=self.user.to_user(),
            status=self.status,
            body=self.body or None,
            submitted_at=self.submitted_at,
        )

    def to_comment(self) -> Comment | None:
        """Review bodies appear in the conversation as top-level comments."""
        if not self.body or self.submitted_at is None:
            return None
        return Comment(
            id=f"review-{self.id}",
            content=self.body,
            author=self.user.to_user(),
            created_at=self.submitted_at,
        )


class GitHubIssueComment(_Payload):
    id: int
    body: str | None = None
    user: GitHubUser
    created_at: datetime | None = None
    updated_at: datetime | None = None
    in_reply_to_id: int | None = Field(default=None, description="Set on review-thread replies")

    def to_comment(self) -> Comment | None:
        if not self.body or self.created_at is None:
            return None
        return Comment(
            id=f"comment-{self.id}",
            content=self.body,
            author=self.user.to_user(),
            created_at=self.created_at,
            parent_id=f"comment-{self.in_reply_to_id}" if self.in_reply_to_id is not None else None,
        )
