"""
Tests for the chain read model (approval_engines.chain_view).
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from approval_engines.chain_view import ChainView, FlowOutcome, build_chain_view
from approval_kernel.domain.approval import (
    ApprovalChain,
    ApprovalRecord,
    ApprovalStatus,
    ChainKey,
)

S, P, A, R, C, K = (
    ApprovalStatus.SUBMITTED,
    ApprovalStatus.PENDING,
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.COMPLETED,
    ApprovalStatus.SKIPPED,
)

KEY = ChainKey("WR-17", 2025, 4)
T0 = datetime(2025, 4, 1, 9, 0, tzinfo=timezone.utc)


def make_chain(*rows) -> ApprovalChain:
    return ApprovalChain.of(
        KEY,
        [
            ApprovalRecord(
                id=uuid4(),
                report_no=KEY.report_no,
                year=KEY.year,
                month=KEY.month,
                user_name=user,
                flow_order=order,
                status=status,
                action_date=T0 if status != P else None,
            )
            for order, (user, status) in enumerate(rows)
        ],
    )


class TestEmptyChain:
    def test_no_flow_yet(self):
        view = build_chain_view(ApprovalChain.of(KEY, []), "alice")
        assert not view.has_existing_flow
        assert view.submitter is None
        assert view.approvers == ()
        assert view.can_edit
        assert not view.can_resubmit
        assert view.flow_direction.flow == ()
        assert view.flow_direction.outcome is None


class TestInProgress:
    chain = make_chain(("alice", S), ("bob", A), ("carol", P), ("dave", P))

    def test_basic_projection(self):
        view = build_chain_view(self.chain, "carol")
        assert view.has_existing_flow
        assert view.submitter.user_name == "alice"
        assert [r.user_name for r in view.approvers] == ["bob", "carol", "dave"]
        assert not view.is_rejected
        assert not view.is_completed
        assert view.awaiting == ("carol", "dave")

    def test_pending_approver_is_target_and_may_edit(self):
        view = build_chain_view(self.chain, "carol")
        assert view.is_approval_target
        assert view.can_edit

    def test_settled_approver_is_not_target(self):
        view = build_chain_view(self.chain, "bob")
        assert not view.is_approval_target
        assert not view.can_edit

    def test_submitter_cannot_edit_while_in_review(self):
        assert not build_chain_view(self.chain, "alice").can_edit

    def test_flow_direction_open(self):
        direction = build_chain_view(self.chain).flow_direction
        assert direction.flow == ("alice", "bob", "carol", "dave")
        assert direction.outcome is None


class TestSkipped:
    def test_skipped_approver_is_still_a_target(self):
        chain = make_chain(("alice", S), ("bob", K), ("carol", A), ("dave", P))
        view = build_chain_view(chain, "bob")
        assert view.is_approval_target
        assert view.awaiting == ("bob", "dave")


class TestRejected:
    chain = make_chain(("alice", S), ("bob", A), ("carol", R))

    def test_rejected_flags(self):
        view = build_chain_view(self.chain, "alice")
        assert view.is_rejected
        assert not view.is_completed
        assert view.awaiting == ()
        assert view.flow_direction.outcome is FlowOutcome.REJECTED
        assert view.flow_direction.action_date == T0

    def test_original_submitter_may_edit(self):
        assert build_chain_view(self.chain, "alice").can_edit
        assert not build_chain_view(self.chain, "bob").can_edit

    @pytest.mark.parametrize("viewer, expected", [("alice", True), ("bob", True), ("carol", False)])
    def test_rejector_cannot_resubmit(self, viewer, expected):
        assert build_chain_view(self.chain, viewer).can_resubmit is expected

    def test_anonymous_cannot_resubmit(self):
        assert not build_chain_view(self.chain).can_resubmit


class TestResubmitted:
    chain = make_chain(
        ("alice", S), ("bob", K), ("carol", R), ("alice", S), ("bob", P), ("carol", P),
    )

    def test_new_attempt_is_not_rejected(self):
        view = build_chain_view(self.chain, "alice")
        assert not view.is_rejected
        assert not view.can_resubmit

    def test_closed_attempt_skip_is_not_awaiting(self):
        view = build_chain_view(self.chain, "bob")
        assert view.awaiting == ("bob", "carol")
        assert [r.flow_order for r in view.chain.records if r.user_name == "bob"] == [1, 4]
        assert view.is_approval_target

    def test_flow_direction_starts_at_current_submitter(self):
        direction = build_chain_view(self.chain).flow_direction
        assert direction.flow == ("alice", "bob", "carol")
        assert direction.outcome is None


class TestCompleted:
    chain = make_chain(("alice", S), ("bob", K), ("carol", C))

    def test_completed_flags(self):
        view = build_chain_view(self.chain, "alice")
        assert view.is_completed
        assert not view.can_edit
        assert not view.can_resubmit
        assert view.flow_direction.outcome is FlowOutcome.COMPLETED

    def test_bypassed_approver_still_listed_as_awaiting(self):
        view = build_chain_view(self.chain, "bob")
        assert view.awaiting == ("bob",)
        assert view.is_approval_target
        assert not view.can_edit


class TestStatusLabels:
    @pytest.mark.parametrize(
        "status, label",
        [
            (S, "Submitted"),
            (P, "Awaiting approval"),
            (A, "Approved"),
            (R, "Returned"),
            (C, "Completed"),
            (K, "Skipped"),
        ],
    )
    def test_labels(self, status, label):
        assert ChainView.status_label(status) == label
        assert ChainView.status_label(int(status)) == label

    def test_display_only_codes_are_not_statuses(self):
        for code in (4, 7):
            with pytest.raises(ValueError):
                ChainView.status_label(code)
