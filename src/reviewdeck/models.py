"""Pydantic models for reviewdeck."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class RawState(StrEnum):
    """Lifecycle state of a pull request as reported by GitHub."""

    OPEN = "open"
    CLOSED = "closed"


class Role(StrEnum):
    """Role a user plays on one specific pull request."""

    REVIEWER = "reviewer"
    AUTHOR = "author"


class ReviewStatus(StrEnum):
    """Canonical review status of a pull request (or of a single review)."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUESTED = "changes_requested"
    MERGED = "merged"
    CLOSED = "closed"

    @property
    def display_name(self) -> str:
        return _STATUS_DISPLAY[self][0]

    @property
    def label(self) -> str:
        """Display name prefixed with an emoji marker."""
        emoji, name = _STATUS_DISPLAY[self][1], _STATUS_DISPLAY[self][0]
        return f"{emoji} {name}"


_STATUS_DISPLAY: dict[ReviewStatus, tuple[str, str]] = {
    ReviewStatus.PENDING: ("Pending", "⏳"),
    ReviewStatus.APPROVED: ("Approved", "✅"),
    ReviewStatus.REJECTED: ("Rejected", "❌"),
    ReviewStatus.CHANGES_REQUESTED: ("Changes Requested", "🔄"),
    ReviewStatus.MERGED: ("Merged", "🎉"),
    ReviewStatus.CLOSED: ("Closed", "🔒"),
}


class ReviewDecision(StrEnum):
    """A decision a reviewer can submit."""

    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"
    COMMENT = "comment"


class User(BaseModel):
    """A GitHub account. Equality and matching use ``id`` only."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="Stable numeric GitHub user id")
    login: str = Field(description="GitHub username, used as display name")
    avatar_url: str | None = Field(default=None, description="Avatar image URL")

    def __eq__(self, other: object) -> bool:
        if isinstance(other, User):
            return self.id == other.id
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.id)


class Review(BaseModel):
    """A submitted review. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Review identifier (provider id or local id for optimistic reviews)")
    reviewer: User = Field(description="Who submitted the review")
    status: ReviewStatus = Field(description="approved, rejected, changes_requested or pending")
    body: str | None = Field(default=None, description="Optional review text")
    submitted_at: datetime = Field(description="When the review was submitted")


class Comment(BaseModel):
    """A single comment in a pull request conversation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique comment identifier")
    content: str = Field(description="Comment body text")
    author: User = Field(description="Comment author")
    created_at: datetime = Field(description="When the comment was posted")
    parent_id: str | None = Field(default=None, description="Id of the comment this one replies to; None for top-level")


class CommentNode(BaseModel):
    """A comment with its reply subtree."""

    comment: Comment
    replies: list[CommentNode] = Field(default_factory=list)


class PullRequest(BaseModel):
    """Unified pull request record produced by the aggregation pipeline."""

    number: int = Field(description="PR number")
    title: str = Field(description="PR title")
    description: str = Field(default="", description="PR body")
    author: User = Field(description="User who opened the PR")
    assigned_reviewers: list[User] = Field(default_factory=list, description="Users requested to review")
    created_at: datetime = Field(description="When the PR was opened")
    updated_at: datetime = Field(description="When the PR was last updated")
    state: RawState = Field(description="Raw lifecycle state")
    merged: bool = Field(default=False, description="Raw merged flag")
    status: ReviewStatus = Field(description="Canonical review status")
    reviews: list[Review] = Field(default_factory=list, description="All submitted reviews, oldest first")
    comments: list[Comment] = Field(default_factory=list, description="Flat comment list in creation order")
    source_branch: str = Field(default="", description="Head branch name")
    target_branch: str = Field(default="", description="Base branch name")
    is_locked: bool = Field(default=False, description="Whether further comments and reviews are blocked")
    roles: dict[int, Role] = Field(default_factory=dict, description="PR-scoped role per user id")

    @property
    def last_activity(self) -> datetime:
        """Most recent of the update, comment and review timestamps."""
        stamps = [self.updated_at]
        stamps.extend(c.created_at for c in self.comments)
        stamps.extend(r.submitted_at for r in self.reviews)
        return max(stamps)

    def is_author(self, user_id: int) -> bool:
        return self.author.id == user_id

    def is_assigned(self, user_id: int) -> bool:
        return any(u.id == user_id for u in self.assigned_reviewers)

    def has_reviewed(self, user_id: int) -> bool:
        return any(r.reviewer.id == user_id for r in self.reviews)


class Permissions(BaseModel):
    """What a user may do on a pull request right now."""

    can_comment: bool = Field(default=False, description="User may post comments")
    can_review_pr: bool = Field(default=False, description="User may submit a review decision")
    can_only_comment: bool = Field(default=False, description="User is the author: may comment but not review")


class MutationState(StrEnum):
    """Lifecycle of an optimistic mutation."""

    ISSUED = "issued"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


# -- Tool result models --------------------------------------------------------


class PullRequestSummary(BaseModel):
    """Compact row for PR listings."""

    number: int = Field(description="PR number")
    title: str = Field(description="PR title")
    author: str = Field(description="Author login")
    status: ReviewStatus = Field(description="Canonical review status")
    is_locked: bool = Field(description="Whether the PR is locked")
    reviewers: list[str] = Field(default_factory=list, description="Assigned reviewer logins")
    comment_count: int = Field(default=0, description="Number of comments")
    review_count: int = Field(default=0, description="Number of reviews")
    last_activity: datetime = Field(description="Most recent activity timestamp")


class PullRequestList(BaseModel):
    """Result of listing pull requests."""

    pull_requests: list[PullRequestSummary] = Field(default_factory=list, description="Matching PRs")
    status_breakdown: dict[str, int] = Field(default_factory=dict, description="Count of matching PRs per status")
    error: str | None = Field(default=None, description="Error message if the request failed")


class PullRequestDetail(BaseModel):
    """One pull request with the viewer's permissions."""

    pull_request: PullRequest | None = Field(default=None, description="The PR record")
    permissions: Permissions = Field(default_factory=Permissions, description="Current user's permissions")
    error: str | None = Field(default=None, description="Error message if the request failed")


class PermissionsResult(BaseModel):
    """Current user's permissions and role on one pull request."""

    pr_number: int = Field(description="PR number")
    user: str = Field(default="", description="Login of the current user")
    role: Role | None = Field(default=None, description="Role on this PR, or None if not a participant")
    permissions: Permissions = Field(default_factory=Permissions, description="What the user may do right now")
    error: str | None = Field(default=None, description="Error message if the request failed")


class CommentThreadResult(BaseModel):
    """Threaded comment view for a pull request."""

    pr_number: int = Field(description="PR number")
    threads: list[CommentNode] = Field(default_factory=list, description="Top-level comments with replies")
    error: str | None = Field(default=None, description="Error message if the request failed")


class MutationResult(BaseModel):
    """Outcome of a comment or review submission."""

    mutation_id: str = Field(default="", description="Identifier of the tracked mutation")
    pr_number: int = Field(description="PR number")
    state: MutationState | None = Field(default=None, description="Mutation state when the tool returned")
    status: ReviewStatus | None = Field(default=None, description="PR status after the local update")
    is_locked: bool | None = Field(default=None, description="PR lock flag after the local update")
    error: str | None = Field(default=None, description="Error message if the submission failed")


class RefreshResult(BaseModel):
    """Outcome of one listing cycle."""

    ok: bool = Field(description="Whether the collection was replaced")
    count: int = Field(default=0, description="Number of PRs now in the collection")
    excluded: list[str] = Field(default_factory=list, description="PR payloads excluded because they could not be parsed")
    error: str | None = Field(default=None, description="Human-readable failure message")


class ConfigInfo(BaseModel):
    """Active reviewdeck configuration with metadata."""

    config: dict = Field(description="Full configuration as a dictionary (token masked)")
    source: str = Field(default="defaults", description="Path of the config file, or 'defaults'")
