"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval workflow: the record status state
machine, the chain key, the immutable record snapshot and the chain
snapshot that the engine reasons over.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/`` or outer layers.

Invariants enforced
-------------------
* Status is a closed enum of the six values the engine can produce.
  Display-only codes (4 "recalled", 7 "rejection target") are not members.
* ``RECORD_TRANSITIONS`` defines the only valid per-record status edges.
  Settled statuses have no outgoing edges.
* ``ApprovalChain.records`` is always sorted by ``flow_order``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =========================================================================
# Record status lifecycle
# =========================================================================


class ApprovalStatus(int, Enum):
    """Approval record states.  Values match the stored integer codes."""

    SUBMITTED = 0
    PENDING = 1
    APPROVED = 2
    REJECTED = 3
    COMPLETED = 5
    SKIPPED = 6

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS: dict[ApprovalStatus, str] = {
    ApprovalStatus.SUBMITTED: "Submitted",
    ApprovalStatus.PENDING: "Awaiting approval",
    ApprovalStatus.APPROVED: "Approved",
    ApprovalStatus.REJECTED: "Returned",
    ApprovalStatus.COMPLETED: "Completed",
    ApprovalStatus.SKIPPED: "Skipped",
}


RECORD_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.SUBMITTED: frozenset(),
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.COMPLETED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.SKIPPED,
    }),
    ApprovalStatus.SKIPPED: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.COMPLETED,
        ApprovalStatus.REJECTED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.COMPLETED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
}

# A bypassed approver may still render a late decision.
ACTIONABLE_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.PENDING,
    ApprovalStatus.SKIPPED,
})

SETTLED_STATUSES: frozenset[ApprovalStatus] = frozenset(
    status for status, edges in RECORD_TRANSITIONS.items() if not edges
)

SUBMITTER_FLOW_ORDER = 0


class ApprovalAction(str, Enum):
    """Decisions an assigned approver can render."""

    APPROVE = "approve"
    REJECT = "reject"


# =========================================================================
# Chain identity
# =========================================================================


@dataclass(frozen=True, order=True)
class ChainKey:
    """Identifies one report instance: ``(report_no, year, month)``."""

    report_no: str
    year: int
    month: int

    def __str__(self) -> str:
        return f"{self.report_no}/{self.year:04d}-{self.month:02d}"


# =========================================================================
# Record and chain snapshots
# =========================================================================


@dataclass(frozen=True)
class ApprovalRecord:
    """Snapshot of one approval record. Immutable."""

    id: UUID
    report_no: str
    year: int
    month: int
    user_name: str
    flow_order: int
    status: ApprovalStatus
    comment: str | None = None
    action_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> ChainKey:
        return ChainKey(self.report_no, self.year, self.month)

    @property
    def is_submitter(self) -> bool:
        return self.status == ApprovalStatus.SUBMITTED

    def to_dict(self) -> dict[str, Any]:
        """Render with the camelCase field names used by transport layers."""

        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value is not None else None

        return {
            "id": str(self.id),
            "reportNo": self.report_no,
            "year": self.year,
            "month": self.month,
            "userName": self.user_name,
            "flowOrder": self.flow_order,
            "status": int(self.status),
            "comment": self.comment,
            "actionDate": _iso(self.action_date),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class ApprovalChain:
    """All records of one chain, sorted by ``flow_order``."""

    key: ChainKey
    records: tuple[ApprovalRecord, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.records, key=lambda r: r.flow_order))
        object.__setattr__(self, "records", ordered)

    @classmethod
    def of(cls, key: ChainKey, records: Any) -> ApprovalChain:
        return cls(key=key, records=tuple(records))

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    @property
    def is_empty(self) -> bool:
        return not self.records

    @property
    def max_flow_order(self) -> int | None:
        """Current chain length marker, or None for an empty chain."""
        if not self.records:
            return None
        return self.records[-1].flow_order

    @property
    def submitter(self) -> ApprovalRecord | None:
        """The original submitter (flow order 0)."""
        for record in self.records:
            if record.flow_order == SUBMITTER_FLOW_ORDER:
                return record
        return None

    @property
    def approvers(self) -> tuple[ApprovalRecord, ...]:
        return tuple(r for r in self.records if r.flow_order > SUBMITTER_FLOW_ORDER)

    @property
    def latest_rejection(self) -> ApprovalRecord | None:
        """The Rejected record with the highest flow order."""
        rejected = [r for r in self.records if r.status == ApprovalStatus.REJECTED]
        return rejected[-1] if rejected else None

    @property
    def current_submitter(self) -> ApprovalRecord | None:
        """The Submitted record opening the current attempt."""
        submitted = [r for r in self.records if r.status == ApprovalStatus.SUBMITTED]
        return submitted[-1] if submitted else None

    def find(self, record_id: UUID) -> ApprovalRecord | None:
        for record in self.records:
            if record.id == record_id:
                return record
        return None

    def above(self, flow_order: int) -> tuple[ApprovalRecord, ...]:
        return tuple(r for r in self.records if r.flow_order > flow_order)

    def with_status(self, *statuses: ApprovalStatus) -> tuple[ApprovalRecord, ...]:
        return tuple(r for r in self.records if r.status in statuses)
