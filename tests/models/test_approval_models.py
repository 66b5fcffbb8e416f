"""
ORM model tests for the approval persistence layer.

Tests: ApprovalRecordModel, ApprovalChainModel -- DTO conversion, aware
timestamps, immutability enforcement and structural constraints.

These are ORM-level tests only.  Service-layer behaviour is tested elsewhere.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, StatementError
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.approval import ApprovalStatus, ChainKey
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.models.approval import ApprovalChainModel, ApprovalRecordModel


NOW = datetime(2025, 4, 1, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_record_model(
    *,
    report_no="WR-17",
    year=2025,
    month=4,
    user_name="bob",
    flow_order=1,
    status=ApprovalStatus.PENDING,
    comment=None,
    action_date=None,
):
    return ApprovalRecordModel(
        id=uuid4(),
        report_no=report_no,
        year=year,
        month=month,
        user_name=user_name,
        flow_order=flow_order,
        status=int(status),
        comment=comment,
        action_date=action_date,
        created_at=NOW,
        updated_at=NOW,
    )


def _persist(session, *models):
    session.add_all(models)
    session.flush()
    return models


# ---------------------------------------------------------------------------
# DTO conversion
# ---------------------------------------------------------------------------


class TestRecordDto:
    def test_to_dto(self, session):
        (model,) = _persist(session, _make_record_model(comment="ok", action_date=NOW))
        dto = model.to_dto()

        assert dto.id == model.id
        assert dto.key == ChainKey("WR-17", 2025, 4)
        assert dto.status is ApprovalStatus.PENDING
        assert dto.comment == "ok"
        assert dto.action_date == NOW

    def test_timestamps_reload_timezone_aware(self, session):
        (model,) = _persist(session, _make_record_model(action_date=NOW))
        session.expire_all()

        reloaded = session.get(ApprovalRecordModel, model.id)
        assert reloaded.created_at.tzinfo is not None
        assert reloaded.action_date == NOW

    def test_naive_datetime_refused(self, session):
        model = _make_record_model()
        model.action_date = datetime(2025, 4, 1, 9, 0)
        session.add(model)
        with pytest.raises(StatementError) as exc_info:
            session.flush()
        assert "naive datetime" in str(exc_info.value)

    def test_to_dict_uses_camel_case(self, session):
        (model,) = _persist(session, _make_record_model())
        data = model.to_dto().to_dict()

        assert set(data) == {
            "id", "reportNo", "year", "month", "userName", "flowOrder",
            "status", "comment", "actionDate", "createdAt", "updatedAt",
        }
        assert data["status"] == 1
        assert data["actionDate"] is None
        assert data["createdAt"] == NOW.isoformat()


# ---------------------------------------------------------------------------
# Immutability
# ---------------------------------------------------------------------------


class TestSettledRecordImmutability:
    @pytest.mark.parametrize(
        "status",
        [
            ApprovalStatus.SUBMITTED,
            ApprovalStatus.APPROVED,
            ApprovalStatus.REJECTED,
            ApprovalStatus.COMPLETED,
        ],
    )
    def test_settled_comment_cannot_change(self, session, status):
        (model,) = _persist(session, _make_record_model(status=status, comment="original"))
        model.comment = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_settled_status_cannot_change(self, session):
        (model,) = _persist(session, _make_record_model(status=ApprovalStatus.APPROVED))
        model.status = int(ApprovalStatus.PENDING)
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert "APPROVED" in exc_info.value.reason

    def test_pending_record_may_be_decided(self, session):
        (model,) = _persist(session, _make_record_model())
        model.status = int(ApprovalStatus.APPROVED)
        model.comment = "fine"
        model.action_date = NOW
        session.flush()
        assert model.to_dto().status is ApprovalStatus.APPROVED

    def test_skipped_record_may_be_decided(self, session):
        (model,) = _persist(session, _make_record_model(status=ApprovalStatus.SKIPPED))
        model.status = int(ApprovalStatus.REJECTED)
        model.comment = "late"
        session.flush()

    @pytest.mark.parametrize("column, value", [("flow_order", 9), ("user_name", "mallory")])
    def test_identity_columns_cannot_change(self, session, column, value):
        (model,) = _persist(session, _make_record_model())
        setattr(model, column, value)
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert column in exc_info.value.reason

    def test_settled_record_may_be_deleted(self, session):
        (model,) = _persist(session, _make_record_model(status=ApprovalStatus.COMPLETED))
        session.delete(model)
        session.flush()
        assert session.get(ApprovalRecordModel, model.id) is None


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


class TestConstraints:
    def test_duplicate_position_refused(self, session):
        _persist(session, _make_record_model(user_name="bob"))
        session.add(_make_record_model(user_name="carol"))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_same_position_in_other_period_allowed(self, session):
        _persist(
            session,
            _make_record_model(month=4),
            _make_record_model(month=5),
        )

    @pytest.mark.parametrize("status", [4, 7, -1])
    def test_unknown_status_refused(self, session, status):
        model = _make_record_model()
        model.status = status
        session.add(model)
        with pytest.raises(IntegrityError):
            session.flush()

    def test_negative_flow_order_refused(self, session):
        session.add(_make_record_model(flow_order=-1))
        with pytest.raises(IntegrityError):
            session.flush()

    @pytest.mark.parametrize("month", [0, 13])
    def test_month_range(self, session, month):
        session.add(_make_record_model(month=month))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_one_head_per_chain(self, session):
        def head():
            return ApprovalChainModel(
                report_no="WR-17", year=2025, month=4, version=0,
                created_at=NOW, updated_at=NOW,
            )

        _persist(session, head())
        session.add(head())
        with pytest.raises(IntegrityError):
            session.flush()


class TestChainHead:
    def test_version_guards_concurrent_update(self, session):
        (head,) = _persist(
            session,
            ApprovalChainModel(
                report_no="WR-17", year=2025, month=4, version=0,
                created_at=NOW, updated_at=NOW,
            ),
        )
        session.execute(
            text("UPDATE approval_chains SET version = 7 WHERE id = :id"),
            {"id": str(head.id)},
        )
        head.version += 1
        with pytest.raises(StaleDataError):
            session.flush()

    def test_key_and_repr(self, session):
        (head,) = _persist(
            session,
            ApprovalChainModel(
                report_no="WR-17", year=2025, month=4, version=0,
                created_at=NOW, updated_at=NOW,
            ),
        )
        loaded = session.execute(select(ApprovalChainModel)).scalar_one()
        assert loaded.key == ChainKey("WR-17", 2025, 4)
        assert "WR-17/2025-04" in repr(head)
