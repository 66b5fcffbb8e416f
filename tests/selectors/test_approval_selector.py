"""
Tests for ApprovalSelector: chain reads, pending queues and the chain view.
"""

from uuid import uuid4

from approval_kernel.domain.approval import ApprovalStatus, ChainKey


class TestGetByReport:
    def test_ordered_by_flow_order(self, create_chain, approval_selector, report_key):
        create_chain(["dave", "carol", "bob"])
        records = approval_selector.get_by_report(
            report_key.report_no, report_key.year, report_key.month
        )
        assert [r.flow_order for r in records] == [0, 1, 2, 3]
        assert [r.user_name for r in records] == ["alice", "dave", "carol", "bob"]

    def test_unknown_report_is_empty(self, approval_selector):
        assert approval_selector.get_by_report("nope", 2025, 4) == []

    def test_get_chain(self, create_chain, approval_selector, report_key):
        create_chain(["bob"])
        chain = approval_selector.get_chain(report_key)
        assert chain.key == report_key
        assert chain.submitter.user_name == "alice"
        assert chain.max_flow_order == 1


class TestGetRecord:
    def test_found(self, create_chain, approval_selector):
        chain = create_chain(["bob"])
        record = chain.approvers[0]
        assert approval_selector.get_record(record.id).user_name == "bob"

    def test_missing(self, approval_selector):
        assert approval_selector.get_record(uuid4()) is None


class TestPendingByUser:
    def test_newest_first(self, create_chain, approval_selector):
        create_chain(["bob"], key=ChainKey("WR-1", 2025, 3))
        create_chain(["carol", "bob"], key=ChainKey("WR-2", 2025, 4))
        create_chain(["bob"], key=ChainKey("WR-3", 2025, 4))

        pending = approval_selector.get_pending_by_user("bob")

        assert [r.report_no for r in pending] == ["WR-3", "WR-2", "WR-1"]
        assert all(r.status is ApprovalStatus.PENDING for r in pending)

    def test_excludes_skipped_and_settled(self, create_chain, workflow, approval_selector, chain_records):
        create_chain(["bob", "carol", "dave"])
        carol = next(r for r in chain_records() if r.user_name == "carol")
        workflow.act(carol.id, "carol", "approve")

        assert approval_selector.get_pending_by_user("bob") == []
        assert approval_selector.get_pending_by_user("carol") == []
        assert [r.user_name for r in approval_selector.get_pending_by_user("dave")] == ["dave"]

    def test_submitter_has_nothing_pending(self, create_chain, approval_selector):
        create_chain(["bob"])
        assert approval_selector.get_pending_by_user("alice") == []


class TestChainView:
    def test_view_follows_workflow(self, create_chain, workflow, approval_selector, chain_records, report_key):
        create_chain(["bob", "carol"])
        view = approval_selector.get_chain_view(report_key, "bob")
        assert view.is_approval_target
        assert view.awaiting == ("bob", "carol")

        carol = next(r for r in chain_records() if r.user_name == "carol")
        workflow.act(carol.id, "carol", "reject", "wrong site")

        view = approval_selector.get_chain_view(report_key, "alice")
        assert view.is_rejected
        assert view.can_edit
        assert view.can_resubmit
        assert not approval_selector.get_chain_view(report_key, "carol").can_resubmit

    def test_missing_chain(self, approval_selector):
        view = approval_selector.get_chain_view(ChainKey("nope", 2025, 4), "alice")
        assert not view.has_existing_flow
        assert view.can_edit
