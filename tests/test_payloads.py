"""Tests for validating raw GitHub payloads."""

from __future__ import annotations

import pytest
from helpers.factories import ALICE, BOB, comment_payload, pr_payload, review_payload
from pydantic import ValidationError

from reviewdeck.models import RawState, ReviewStatus
from reviewdeck.payloads import GitHubIssueComment, GitHubPullRequest, GitHubReview, review_status_from_raw


class TestReviewStatusFromRaw:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("APPROVED", ReviewStatus.APPROVED),
            ("changes_requested", ReviewStatus.CHANGES_REQUESTED),
            ("REJECTED", ReviewStatus.REJECTED),
            ("DISMISSED", ReviewStatus.REJECTED),
            ("COMMENTED", ReviewStatus.PENDING),
            ("something-new", ReviewStatus.PENDING),
        ],
    )
    def test_mapping(self, raw, expected):
        assert review_status_from_raw(raw) is expected


class TestGitHubPullRequest:
    def test_extra_fields_ignored(self):
        payload = pr_payload()
        payload["labels"] = [{"name": "bug"}]
        pr = GitHubPullRequest.model_validate(payload)
        assert pr.number == 42
        assert pr.state is RawState.OPEN

    def test_merged_from_flag(self):
        payload = pr_payload(state="closed")
        payload["merged"] = True
        assert GitHubPullRequest.model_validate(payload).is_merged is True

    def test_closed_unmerged(self):
        assert GitHubPullRequest.model_validate(pr_payload(state="closed")).is_merged is False

    def test_unknown_state_rejected(self):
        with pytest.raises(ValidationError):
            GitHubPullRequest.model_validate(pr_payload(state="draft"))


class TestGitHubReview:
    def test_to_review(self):
        review = GitHubReview.model_validate(review_payload(5, BOB, "APPROVED", 3, body="nice")).to_review()
        assert review is not None
        assert review.id == "review-5"
        assert review.reviewer == BOB
        assert review.status is ReviewStatus.APPROVED
        assert review.body == "nice"

    def test_unsubmitted_review_is_skipped(self):
        payload = review_payload(5, BOB, "PENDING")
        payload["submitted_at"] = None
        parsed = GitHubReview.model_validate(payload)
        assert parsed.to_review() is None
        assert parsed.to_comment() is None

    def test_empty_body_is_not_a_comment(self):
        assert GitHubReview.model_validate(review_payload(5, BOB, "APPROVED")).to_comment() is None


class TestGitHubIssueComment:
    def test_top_level(self):
        comment = GitHubIssueComment.model_validate(comment_payload(3, ALICE, "hello")).to_comment()
        assert comment is not None
        assert comment.id == "comment-3"
        assert comment.parent_id is None

    def test_reply(self):
        comment = GitHubIssueComment.model_validate(comment_payload(4, BOB, "hi", 1, in_reply_to=3)).to_comment()
        assert comment.parent_id == "comment-3"

    def test_blank_body_dropped(self):
        assert GitHubIssueComment.model_validate(comment_payload(3, ALICE, "")).to_comment() is None
