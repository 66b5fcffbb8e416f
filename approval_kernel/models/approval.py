"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval records and the per-chain head row.

Architecture position: Kernel > Models.  May import from db/, domain/ and
    exceptions only.

Invariants enforced:
    - CHECK constraints limit status to the six engine statuses, flow_order
      to non-negative values and month to 1-12.
    - UNIQUE(report_no, year, month, flow_order): one record per position,
      which also makes a second concurrent create for the same report fail.
    - Settled records (Submitted, Approved, Completed, Rejected) cannot be
      updated; identity columns of any record cannot be updated.
    - The chain head row carries a manually bumped ``version`` used as the
      mapper's version_id_col, so concurrent writers on one chain conflict.

Failure modes:
    - IntegrityError on duplicate (report_no, year, month, flow_order).
    - ImmutabilityViolationError on UPDATE of a settled record.
    - StaleDataError when the chain head version moved under us.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase
from approval_kernel.domain.approval import (
    SETTLED_STATUSES,
    ApprovalRecord,
    ApprovalStatus,
    ChainKey,
)
from approval_kernel.exceptions import ImmutabilityViolationError

_VALID_STATUS_SQL = ", ".join(str(int(s)) for s in ApprovalStatus)


class ApprovalRecordModel(TrackedBase):
    """Persistent approval record: one participant at one flow position.

    Contract:
        Created by create/resubmit, updated by act, deleted only by reject
        truncation and stale-resubmission removal.
    """

    __tablename__ = "approval_records"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_VALID_STATUS_SQL})",
            name="ck_approval_records_valid_status",
        ),
        CheckConstraint(
            "flow_order >= 0",
            name="ck_approval_records_flow_order_non_negative",
        ),
        CheckConstraint(
            "month BETWEEN 1 AND 12",
            name="ck_approval_records_month_range",
        ),
        UniqueConstraint(
            "report_no", "year", "month", "flow_order",
            name="uq_approval_records_chain_position",
        ),
        Index(
            "ix_approval_records_chain",
            "report_no", "year", "month",
        ),
        Index(
            "ix_approval_records_assignee_status",
            "user_name", "status",
        ),
    )

    report_no: Mapped[str] = mapped_column(String(50), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    user_name: Mapped[str] = mapped_column(String(100), nullable=False)
    flow_order: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_date: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def key(self) -> ChainKey:
        return ChainKey(self.report_no, self.year, self.month)

    def __repr__(self) -> str:
        return (
            f"<ApprovalRecord {self.id} {self.key} "
            f"#{self.flow_order} {self.user_name} status={self.status}>"
        )

    def to_dto(self) -> ApprovalRecord:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalRecord(
            id=self.id,
            report_no=self.report_no,
            year=self.year,
            month=self.month,
            user_name=self.user_name,
            flow_order=self.flow_order,
            status=ApprovalStatus(self.status),
            comment=self.comment,
            action_date=self.action_date,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class ApprovalChainModel(TrackedBase):
    """Head row for one chain key; the unit of locking for mutations.

    Guarantees:
        - One row per (report_no, year, month).
        - ``version`` increases by exactly one per committed mutation.
    """

    __tablename__ = "approval_chains"

    __table_args__ = (
        UniqueConstraint(
            "report_no", "year", "month",
            name="uq_approval_chains_key",
        ),
    )

    report_no: Mapped[str] = mapped_column(String(50), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_action: Mapped[str | None] = mapped_column(String(20), nullable=True)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    @property
    def key(self) -> ChainKey:
        return ChainKey(self.report_no, self.year, self.month)

    def __repr__(self) -> str:
        return f"<ApprovalChain {self.key} v{self.version} last={self.last_action}>"


# =============================================================================
# ORM-level protection for settled records
# =============================================================================

_IDENTITY_COLUMNS = ("report_no", "year", "month", "user_name", "flow_order")
_DECISION_COLUMNS = ("status", "comment", "action_date")


@event.listens_for(ApprovalRecordModel, "before_update")
def prevent_settled_record_update(mapper, connection, target):
    """Refuse updates to settled records and to identity columns."""
    state = inspect(target)

    for column in _IDENTITY_COLUMNS:
        if state.attrs[column].history.deleted:
            raise ImmutabilityViolationError(
                entity_type="ApprovalRecord",
                entity_id=str(target.id),
                reason=f"{column} cannot change",
            )

    status_history = state.attrs.status.history
    persisted = ApprovalStatus(
        status_history.deleted[0] if status_history.deleted else target.status
    )
    if persisted not in SETTLED_STATUSES:
        return

    changed = [
        column for column in _DECISION_COLUMNS
        if state.attrs[column].history.has_changes()
    ]
    if changed:
        raise ImmutabilityViolationError(
            entity_type="ApprovalRecord",
            entity_id=str(target.id),
            reason=f"record is settled as {persisted.name}; cannot change {', '.join(changed)}",
        )
