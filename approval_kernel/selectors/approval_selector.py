"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-only access to approval records, chain snapshots and
    the per-viewer chain read model.
Architecture position: Kernel > Selectors.  May import from models/, domain/,
    the pure chain view engine and selectors/base.py.

Invariants enforced:
    - Read-only and lock-free.
    - Chain records come back sorted by flow order; pending lists newest first.

Failure modes:
    - Returns None or an empty result when nothing matches (never raises on
      absence of data).
"""

from uuid import UUID

from sqlalchemy import select

from approval_engines.chain_view import ChainView, build_chain_view
from approval_kernel.domain.approval import (
    ApprovalChain,
    ApprovalRecord,
    ApprovalStatus,
    ChainKey,
)
from approval_kernel.models.approval import ApprovalRecordModel
from approval_kernel.selectors.base import BaseSelector


class ApprovalSelector(BaseSelector[ApprovalRecordModel]):
    """Queries over approval records."""

    def get_record(self, record_id: UUID) -> ApprovalRecord | None:
        """Get a single record by id."""
        model = self.session.get(ApprovalRecordModel, record_id)
        return model.to_dto() if model is not None else None

    def get_by_report(self, report_no: str, year: int, month: int) -> list[ApprovalRecord]:
        """
        All records of one chain, ordered by flow order.

        Returns an empty list when the report instance has no chain.
        """
        rows = self.session.execute(
            select(ApprovalRecordModel)
            .where(
                ApprovalRecordModel.report_no == report_no,
                ApprovalRecordModel.year == year,
                ApprovalRecordModel.month == month,
            )
            .order_by(ApprovalRecordModel.flow_order)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def get_chain(self, key: ChainKey) -> ApprovalChain:
        return ApprovalChain.of(key, self.get_by_report(key.report_no, key.year, key.month))

    def get_pending_by_user(self, user_name: str) -> list[ApprovalRecord]:
        """
        Records awaiting a decision from ``user_name``.

        Only status Pending is returned; Skipped records can still be acted
        on but are not listed.  Newest first.
        """
        rows = self.session.execute(
            select(ApprovalRecordModel)
            .where(
                ApprovalRecordModel.user_name == user_name,
                ApprovalRecordModel.status == int(ApprovalStatus.PENDING),
            )
            .order_by(
                ApprovalRecordModel.created_at.desc(),
                ApprovalRecordModel.report_no,
                ApprovalRecordModel.flow_order,
            )
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def get_chain_view(self, key: ChainKey, viewer: str | None = None) -> ChainView:
        """Read model for rendering one chain to ``viewer``."""
        return build_chain_view(self.get_chain(key), viewer)
