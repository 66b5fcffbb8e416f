"""
approval_engines.chain_view -- Read model derived from a chain snapshot.

Responsibility:
    Answer the questions screens ask about a chain: who submitted it, who
    still has to act, whether it is returned or completed, whether a given
    viewer may edit, approve or resubmit, and which way the flow currently
    points.  Pure projection; the selector loads the snapshot.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Derived only from record statuses and flow orders; never mutates.
    - ``can_resubmit`` is false for the user who made the latest rejection
      and once a newer attempt has been submitted above it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from approval_kernel.domain.approval import (
    ACTIONABLE_STATUSES,
    ApprovalChain,
    ApprovalRecord,
    ApprovalStatus,
)


class FlowOutcome(str, Enum):
    """How the current attempt ended, if it has."""

    REJECTED = "rejected"
    COMPLETED = "completed"


@dataclass(frozen=True)
class FlowDirection:
    """Participants of the current attempt and how it ended."""

    flow: tuple[str, ...]
    outcome: FlowOutcome | None
    action_date: datetime | None


@dataclass(frozen=True)
class ChainView:
    """Everything a screen needs to render one chain for one viewer."""

    chain: ApprovalChain
    viewer: str | None
    submitter: ApprovalRecord | None
    approvers: tuple[ApprovalRecord, ...]
    has_existing_flow: bool
    is_rejected: bool
    is_completed: bool
    is_approval_target: bool
    can_edit: bool
    can_resubmit: bool
    awaiting: tuple[str, ...]
    flow_direction: FlowDirection

    @staticmethod
    def status_label(status: ApprovalStatus | int) -> str:
        return ApprovalStatus(status).label


def open_records(chain: ApprovalChain) -> tuple[ApprovalRecord, ...]:
    """Records of the current attempt that still accept a decision."""
    rejection = chain.latest_rejection
    floor = rejection.flow_order if rejection is not None else 0
    return tuple(
        r for r in chain.with_status(*ACTIONABLE_STATUSES) if r.flow_order > floor
    )


def is_returned(chain: ApprovalChain) -> bool:
    """The current attempt ended in a rejection and was not resubmitted."""
    rejection = chain.latest_rejection
    if rejection is None:
        return False
    return not any(
        r.status == ApprovalStatus.SUBMITTED for r in chain.above(rejection.flow_order)
    )


def is_approval_target(chain: ApprovalChain, viewer: str | None) -> bool:
    """Viewer holds a record that still accepts a decision."""
    if viewer is None:
        return False
    return any(r.user_name == viewer for r in open_records(chain))


def can_resubmit(chain: ApprovalChain, viewer: str | None) -> bool:
    if viewer is None or chain.is_empty:
        return False
    if chain.with_status(ApprovalStatus.COMPLETED):
        return False
    if not is_returned(chain):
        return False
    return chain.latest_rejection.user_name != viewer


def can_edit(chain: ApprovalChain, viewer: str | None) -> bool:
    if chain.is_empty:
        return True
    if chain.with_status(ApprovalStatus.COMPLETED):
        return False
    if is_returned(chain):
        submitter = chain.submitter
        return submitter is not None and submitter.user_name == viewer
    return is_approval_target(chain, viewer)


def flow_direction(chain: ApprovalChain) -> FlowDirection:
    """Names from the current submitter onward, plus the attempt's outcome."""
    start = chain.current_submitter
    attempt = chain.records if start is None else (start, *chain.above(start.flow_order))

    outcome: FlowOutcome | None = None
    action_date: datetime | None = None
    for record in attempt:
        if record.status == ApprovalStatus.REJECTED:
            outcome, action_date = FlowOutcome.REJECTED, record.action_date
        elif record.status == ApprovalStatus.COMPLETED:
            outcome, action_date = FlowOutcome.COMPLETED, record.action_date

    return FlowDirection(
        flow=tuple(r.user_name for r in attempt),
        outcome=outcome,
        action_date=action_date,
    )


def build_chain_view(chain: ApprovalChain, viewer: str | None = None) -> ChainView:
    """Project a chain snapshot into the read model for ``viewer``."""
    return ChainView(
        chain=chain,
        viewer=viewer,
        submitter=chain.submitter,
        approvers=chain.approvers,
        has_existing_flow=not chain.is_empty,
        is_rejected=is_returned(chain),
        is_completed=bool(chain.with_status(ApprovalStatus.COMPLETED)),
        is_approval_target=is_approval_target(chain, viewer),
        can_edit=can_edit(chain, viewer),
        can_resubmit=can_resubmit(chain, viewer),
        awaiting=tuple(r.user_name for r in open_records(chain)),
        flow_direction=flow_direction(chain),
    )
