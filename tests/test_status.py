"""Tests for status resolution and the lock policy."""

from __future__ import annotations

from datetime import datetime

import pytest
from helpers.factories import ALICE, BOB, CAROL, make_review

from reviewdeck.engine.status import is_locked, latest_reviews, resolve_status
from reviewdeck.models import RawState, Review, ReviewStatus

APPROVED = ReviewStatus.APPROVED
REJECTED = ReviewStatus.REJECTED
CHANGES = ReviewStatus.CHANGES_REQUESTED
PENDING = ReviewStatus.PENDING


class TestClosedPullRequests:
    def test_closed_and_merged_is_merged(self):
        assert resolve_status("closed", True, []) is ReviewStatus.MERGED

    def test_closed_not_merged_is_closed(self):
        assert resolve_status("closed", False, []) is ReviewStatus.CLOSED

    def test_unknown_merged_flag_counts_as_not_merged(self):
        assert resolve_status("closed", None, []) is ReviewStatus.CLOSED

    def test_reviews_are_ignored_once_closed(self):
        reviews = [make_review(BOB, APPROVED)]
        assert resolve_status(RawState.CLOSED, False, reviews) is ReviewStatus.CLOSED
        assert resolve_status(RawState.CLOSED, True, reviews) is ReviewStatus.MERGED


class TestOpenPullRequests:
    def test_no_reviews_is_pending(self):
        assert resolve_status("open", False, []) is PENDING

    def test_single_approval(self):
        assert resolve_status("open", False, [make_review(BOB, APPROVED)]) is APPROVED

    def test_rejection_beats_approval(self):
        reviews = [make_review(BOB, APPROVED, 1), make_review(CAROL, REJECTED, 2)]
        assert resolve_status("open", False, reviews) is REJECTED

    def test_changes_requested_beats_approval(self):
        reviews = [make_review(BOB, CHANGES, 1), make_review(CAROL, APPROVED, 2)]
        assert resolve_status("open", False, reviews) is CHANGES

    def test_rejection_beats_changes_requested(self):
        reviews = [make_review(BOB, CHANGES, 1), make_review(CAROL, REJECTED, 2)]
        assert resolve_status("open", False, reviews) is REJECTED

    def test_only_latest_review_per_reviewer_counts(self):
        reviews = [make_review(BOB, CHANGES, 1), make_review(BOB, APPROVED, 5)]
        assert resolve_status("open", False, reviews) is APPROVED

    def test_latest_is_by_time_not_list_position(self):
        reviews = [make_review(BOB, APPROVED, 5), make_review(BOB, CHANGES, 1)]
        assert resolve_status("open", False, reviews) is APPROVED

    def test_comment_only_reviews_stay_pending(self):
        assert resolve_status("open", False, [make_review(BOB, PENDING)]) is PENDING

    def test_accepts_raw_state_strings(self):
        assert resolve_status("open", None, []) is PENDING

    def test_unknown_state_is_rejected(self):
        with pytest.raises(ValueError, match="draft"):
            resolve_status("draft", False, [])


class TestLatestReviews:
    def test_keeps_one_review_per_reviewer(self):
        reviews = [make_review(BOB, CHANGES, 1), make_review(CAROL, APPROVED, 2), make_review(BOB, APPROVED, 3)]
        latest = latest_reviews(reviews)
        assert [(r.reviewer.login, r.status) for r in latest] == [("bob", APPROVED), ("carol", APPROVED)]

    def test_equal_timestamps_later_position_wins(self):
        reviews = [
            make_review(BOB, REJECTED, 3, review_id="first"),
            make_review(BOB, APPROVED, 3, review_id="second"),
        ]
        assert [r.id for r in latest_reviews(reviews)] == ["second"]

    def test_naive_and_aware_timestamps_compare(self):
        naive = Review(id="n", reviewer=BOB, status=CHANGES, submitted_at=datetime(2026, 3, 2, 8, 0))  # noqa: DTZ001
        aware = make_review(BOB, APPROVED, 0, review_id="a")
        assert [r.id for r in latest_reviews([aware, naive])] == ["a"]

    def test_matches_reviewers_by_id(self):
        renamed = ALICE.model_copy(update={"login": "alice-renamed"})
        reviews = [make_review(ALICE, REJECTED, 1), make_review(renamed, APPROVED, 2)]
        assert len(latest_reviews(reviews)) == 1


class TestIsLocked:
    @pytest.mark.parametrize("status", [ReviewStatus.MERGED, ReviewStatus.CLOSED, APPROVED, REJECTED])
    def test_locking_statuses(self, status):
        assert is_locked("open", status) is True

    @pytest.mark.parametrize("status", [PENDING, CHANGES])
    def test_open_statuses(self, status):
        assert is_locked("open", status) is False

    def test_closed_state_always_locks(self):
        assert is_locked(RawState.CLOSED, PENDING) is True

    def test_lock_follows_resolved_status(self):
        reviews = [make_review(BOB, CHANGES, 1)]
        status = resolve_status("open", False, reviews)
        assert is_locked("open", status) is False
        reviews.append(make_review(BOB, APPROVED, 2))
        status = resolve_status("open", False, reviews)
        assert is_locked("open", status) is True
