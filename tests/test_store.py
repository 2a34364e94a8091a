"""Tests for the process-wide pull request store."""

from __future__ import annotations

import pytest
from helpers.factories import ALICE, BOB, CAROL, make_comment, make_pr, make_review

from reviewdeck.engine.store import PullRequestStore, UnknownPullRequestError
from reviewdeck.models import PullRequest, ReviewStatus, Role


@pytest.fixture
def store() -> PullRequestStore:
    return PullRequestStore([make_pr(42), make_pr(7)])


class TestReads:
    def test_snapshot_keeps_listing_order(self, store: PullRequestStore):
        assert [pr.number for pr in store.snapshot()] == [42, 7]

    def test_snapshot_is_a_copy(self, store: PullRequestStore):
        snap = store.snapshot()
        snap[0].comments.append(make_comment("sneaky"))
        assert store.get(42).comments == []

    def test_get_unknown_raises(self, store: PullRequestStore):
        with pytest.raises(UnknownPullRequestError, match="#99"):
            store.get(99)

    def test_role_of(self, store: PullRequestStore):
        assert store.role_of(42, ALICE.id) is Role.AUTHOR
        assert store.role_of(42, BOB.id) is Role.REVIEWER
        assert store.role_of(42, CAROL.id) is None
        assert store.role_of(99, ALICE.id) is None

    def test_len_and_contains(self, store: PullRequestStore):
        assert len(store) == 2
        assert 42 in store
        assert 99 not in store


class TestWrites:
    def test_replace_all(self, store: PullRequestStore):
        store.replace_all([make_pr(1)])
        assert [pr.number for pr in store.snapshot()] == [1]

    def test_update_recomputes_lock(self, store: PullRequestStore):
        updated = store.update(42, status=ReviewStatus.APPROVED)
        assert updated.is_locked is True
        updated = store.update(42, status=ReviewStatus.CHANGES_REQUESTED)
        assert updated.is_locked is False

    def test_update_rejects_explicit_lock(self, store: PullRequestStore):
        with pytest.raises(ValueError, match="is_locked"):
            store.update(42, is_locked=True)

    def test_update_leaves_other_records_untouched(self, store: PullRequestStore):
        other = store._prs[7]
        store.update(42, title="renamed")
        assert store._prs[7] is other
        assert store.get(42).title == "renamed"

    def test_append_and_remove_comment(self, store: PullRequestStore):
        store.append_comment(42, make_comment("c1"))
        assert [c.id for c in store.get(42).comments] == ["c1"]
        store.remove_comment(42, "c1")
        assert store.get(42).comments == []

    def test_append_review_sets_status_and_role(self, store: PullRequestStore):
        pr = store.append_review(42, make_review(CAROL, ReviewStatus.REJECTED), ReviewStatus.REJECTED)
        assert pr.status is ReviewStatus.REJECTED
        assert pr.is_locked is True
        assert store.role_of(42, CAROL.id) is Role.REVIEWER

    def test_remove_review_restores_status_and_roles(self, store: PullRequestStore):
        before = store.get(42)
        review = make_review(CAROL, ReviewStatus.APPROVED, review_id="r1")
        store.append_review(42, review, ReviewStatus.APPROVED)
        pr = store.remove_review(42, "r1", before.status, before.roles)
        assert pr.reviews == []
        assert pr.status is before.status
        assert pr.is_locked is False
        assert store.role_of(42, CAROL.id) is None

    def test_remove_review_keeps_record_without_that_review(self, store: PullRequestStore):
        fresh = make_pr(42, reviews=(make_review(CAROL, ReviewStatus.CHANGES_REQUESTED, review_id="r2"),))
        store.replace_all([fresh])
        pr = store.remove_review(42, "r1", ReviewStatus.PENDING, {ALICE.id: Role.AUTHOR})
        assert pr == fresh
        assert store.role_of(42, CAROL.id) is Role.REVIEWER

    def test_writes_to_unknown_pr_raise(self, store: PullRequestStore):
        with pytest.raises(UnknownPullRequestError):
            store.append_comment(99, make_comment("x"))


class TestListeners:
    def test_listener_receives_snapshots(self, store: PullRequestStore):
        seen: list[list[int]] = []
        store.subscribe(lambda prs: seen.append([pr.number for pr in prs]))
        store.replace_all([make_pr(5)])
        store.update(5, title="x")
        assert seen == [[5], [5]]

    def test_listener_receives_pull_request_records(self, store: PullRequestStore):
        seen: list[PullRequest] = []

        def listener(prs: list[PullRequest]) -> None:
            seen.extend(prs)

        store.subscribe(listener)
        store.update(42, title="renamed")
        assert [pr.title for pr in seen] == ["renamed", "PR 7"]

    def test_unsubscribe(self, store: PullRequestStore):
        seen: list[object] = []
        unsubscribe = store.subscribe(seen.append)
        unsubscribe()
        store.replace_all([])
        assert seen == []

    def test_failing_listener_does_not_block_others(self, store: PullRequestStore, caplog):
        seen: list[object] = []

        def broken(_prs):
            raise RuntimeError("listener bug")

        store.subscribe(broken)
        store.subscribe(seen.append)
        store.replace_all([])
        assert len(seen) == 1
        assert "Store listener failed" in caplog.text
