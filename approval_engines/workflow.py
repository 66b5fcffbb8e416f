"""
approval_engines.workflow -- Pure approval chain decision engine.

Responsibility:
    Decide what a create, act or resubmit request does to an approval
    chain.  Every function takes a loaded ``ApprovalChain`` snapshot and
    returns a plan (records to insert, status changes, records to delete).
    The workflow service applies the plan inside one transaction.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types and approval_kernel
    exceptions.

Invariants enforced:
    - Flow order 0 is the submitter, created once as Submitted and never
      changed by any plan.
    - Checks run in a fixed order: not found, then authorization, then
      state, then action/comment validation.  A plan is only returned when
      every check passed, so nothing is ever half applied.
    - Retroactive skip: an approve or reject at order k marks every other
      Pending record with 0 < order < k as Skipped.
    - Reject truncation: a reject at order k deletes every record above k.
    - Resubmission never touches records at or below the latest rejection.
    - Blank or whitespace-only comments are stored as None.
    - Purity: no clock access (``now`` is passed in), no I/O, no database.

Failure modes:
    - ValidationError on blank report number, blank names, empty approver
      list, out-of-range month/year, unknown action, blank reject comment.
    - ApprovalRecordNotFoundError if the record is not in the chain.
    - AuthorizationError if the acting user is not the assignee.
    - RecordNotActionableError if the record is settled or belongs to the
      history below the latest rejection.
    - NoRejectionToResubmitError if resubmitting a chain with no rejection.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Sequence
from uuid import UUID, uuid4

from approval_kernel.domain.approval import (
    ACTIONABLE_STATUSES,
    RECORD_TRANSITIONS,
    SUBMITTER_FLOW_ORDER,
    ApprovalAction,
    ApprovalChain,
    ApprovalRecord,
    ApprovalStatus,
    ChainKey,
)
from approval_kernel.exceptions import (
    ApprovalRecordNotFoundError,
    AuthorizationError,
    NoRejectionToResubmitError,
    RecordNotActionableError,
    UnknownActionError,
    ValidationError,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.workflow")


# =========================================================================
# Plans
# =========================================================================


@dataclass(frozen=True)
class NewRecord:
    """A record the service must insert."""

    flow_order: int
    user_name: str
    status: ApprovalStatus
    comment: str | None = None
    action_date: datetime | None = None

    def materialize(self, key: ChainKey, record_id: UUID, now: datetime) -> ApprovalRecord:
        return ApprovalRecord(
            id=record_id,
            report_no=key.report_no,
            year=key.year,
            month=key.month,
            user_name=self.user_name,
            flow_order=self.flow_order,
            status=self.status,
            comment=self.comment,
            action_date=self.action_date,
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True)
class StatusChange:
    """One record moving from one status to another."""

    record_id: UUID
    flow_order: int
    previous: ApprovalStatus
    new: ApprovalStatus


@dataclass(frozen=True)
class CreationPlan:
    """Submitter plus approvers for a brand-new chain."""

    key: ChainKey
    records: tuple[NewRecord, ...]
    now: datetime

    def apply(
        self,
        chain: ApprovalChain,
        id_factory: Callable[[], UUID] = uuid4,
    ) -> ApprovalChain:
        created = [r.materialize(self.key, id_factory(), self.now) for r in self.records]
        return ApprovalChain.of(self.key, [*chain.records, *created])


@dataclass(frozen=True)
class ActionPlan:
    """Outcome of an approve or reject on one record.

    ``target`` carries the new status for the acting record; ``comment``
    and ``action_date`` are written to that record only.  ``skipped``
    records change status only.
    """

    key: ChainKey
    action: ApprovalAction
    target: StatusChange
    comment: str | None
    action_date: datetime
    skipped: tuple[StatusChange, ...] = ()
    deleted: tuple[ApprovalRecord, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.target.new == ApprovalStatus.COMPLETED

    def apply(self, chain: ApprovalChain) -> ApprovalChain:
        deleted_ids = {r.id for r in self.deleted}
        skipped_ids = {c.record_id for c in self.skipped}
        result: list[ApprovalRecord] = []
        for record in chain.records:
            if record.id in deleted_ids:
                continue
            if record.id == self.target.record_id:
                record = replace(
                    record,
                    status=self.target.new,
                    comment=self.comment,
                    action_date=self.action_date,
                    updated_at=self.action_date,
                )
            elif record.id in skipped_ids:
                record = replace(
                    record,
                    status=ApprovalStatus.SKIPPED,
                    updated_at=self.action_date,
                )
            result.append(record)
        return ApprovalChain.of(self.key, result)


@dataclass(frozen=True)
class ResubmissionPlan:
    """Replace everything above the latest rejection with a fresh attempt."""

    key: ChainKey
    rejection: ApprovalRecord
    deleted: tuple[ApprovalRecord, ...]
    records: tuple[NewRecord, ...]
    now: datetime

    def apply(
        self,
        chain: ApprovalChain,
        id_factory: Callable[[], UUID] = uuid4,
    ) -> ApprovalChain:
        deleted_ids = {r.id for r in self.deleted}
        kept = [r for r in chain.records if r.id not in deleted_ids]
        created = [r.materialize(self.key, id_factory(), self.now) for r in self.records]
        return ApprovalChain.of(self.key, [*kept, *created])


# =========================================================================
# Input validation
# =========================================================================


def validate_chain_key(key: ChainKey) -> None:
    """Reject blank report numbers and impossible periods."""
    if not key.report_no or not key.report_no.strip():
        raise ValidationError("report_no", "report number is required")
    if key.year <= 0:
        raise ValidationError("year", f"year must be positive, got {key.year}")
    if not 1 <= key.month <= 12:
        raise ValidationError("month", f"month must be 1-12, got {key.month}")


def validate_participants(
    submitter_name: str,
    approver_names: Sequence[str],
) -> tuple[str, ...]:
    """Require a submitter and at least one approver, none blank."""
    if not submitter_name or not submitter_name.strip():
        raise ValidationError("submitter_name", "submitter is required")
    if isinstance(approver_names, str):
        raise ValidationError("approver_names", "expected a list of user names")
    approvers = tuple(approver_names or ())
    if not approvers:
        raise ValidationError("approver_names", "at least one approver is required")
    for index, name in enumerate(approvers):
        if not name or not str(name).strip():
            raise ValidationError(
                "approver_names", f"approver at position {index + 1} is blank"
            )
    return approvers


def coerce_action(action: ApprovalAction | str) -> ApprovalAction:
    """Accept the enum or its string value; anything else is unknown."""
    if isinstance(action, ApprovalAction):
        return action
    try:
        return ApprovalAction(action)
    except ValueError:
        raise UnknownActionError(str(action)) from None


def normalize_comment(comment: str | None) -> str | None:
    """Blank or whitespace-only comments are stored as None."""
    if comment is None or not comment.strip():
        return None
    return comment


def _attempt(
    start_order: int,
    submitter_name: str,
    approvers: tuple[str, ...],
    comment: str | None,
    now: datetime,
) -> tuple[NewRecord, ...]:
    """A submitter record at ``start_order`` followed by pending approvers."""
    submitter = NewRecord(
        flow_order=start_order,
        user_name=submitter_name,
        status=ApprovalStatus.SUBMITTED,
        comment=normalize_comment(comment),
        action_date=now,
    )
    pending = tuple(
        NewRecord(
            flow_order=start_order + offset,
            user_name=name,
            status=ApprovalStatus.PENDING,
        )
        for offset, name in enumerate(approvers, start=1)
    )
    return (submitter, *pending)


# =========================================================================
# Decisions
# =========================================================================


def plan_creation(
    key: ChainKey,
    submitter_name: str,
    approver_names: Sequence[str],
    comment: str | None,
    now: datetime,
) -> CreationPlan:
    """Build the initial chain: submitter at 0, approvers at 1..N."""
    validate_chain_key(key)
    approvers = validate_participants(submitter_name, approver_names)
    return CreationPlan(
        key=key,
        records=_attempt(SUBMITTER_FLOW_ORDER, submitter_name, approvers, comment, now),
        now=now,
    )


def plan_action(
    chain: ApprovalChain,
    record_id: UUID,
    acting_user_name: str,
    action: ApprovalAction | str,
    comment: str | None,
    now: datetime,
    *,
    require_reject_comment: bool = True,
) -> ActionPlan:
    """Resolve an approve or reject by the assignee of ``record_id``.

    Args:
        chain: Snapshot of the whole chain the record belongs to.
        record_id: The record being acted on.
        acting_user_name: Who is acting; must match the assignee.
        action: ``approve`` or ``reject``.
        comment: Free text stored on the acting record.
        now: Action timestamp.
        require_reject_comment: Refuse a reject without a reason.

    Returns:
        ActionPlan describing the target change, skips and deletions.
    """
    record = chain.find(record_id)
    if record is None:
        raise ApprovalRecordNotFoundError(str(record_id))

    if record.user_name != acting_user_name:
        raise AuthorizationError(str(record_id), acting_user_name, record.user_name)

    if record.status not in ACTIONABLE_STATUSES:
        raise RecordNotActionableError(str(record_id), record.status.name)

    # History at or below the latest rejection is permanent; a bypassed
    # approver from a closed attempt can no longer decide.
    rejection = chain.latest_rejection
    if rejection is not None and record.flow_order < rejection.flow_order:
        raise RecordNotActionableError(str(record_id), f"{record.status.name} (closed attempt)")

    decided = coerce_action(action)
    if (
        decided == ApprovalAction.REJECT
        and require_reject_comment
        and not (comment or "").strip()
    ):
        raise ValidationError("comment", "a reason is required to reject")

    if decided == ApprovalAction.APPROVE:
        is_terminal = record.flow_order >= (chain.max_flow_order or 0)
        new_status = ApprovalStatus.COMPLETED if is_terminal else ApprovalStatus.APPROVED
        deleted: tuple[ApprovalRecord, ...] = ()
    else:
        new_status = ApprovalStatus.REJECTED
        deleted = chain.above(record.flow_order)

    assert new_status in RECORD_TRANSITIONS[record.status], (
        f"illegal transition {record.status.name} -> {new_status.name}"
    )

    skipped = tuple(
        StatusChange(
            record_id=other.id,
            flow_order=other.flow_order,
            previous=other.status,
            new=ApprovalStatus.SKIPPED,
        )
        for other in chain.records
        if other.id != record.id
        and SUBMITTER_FLOW_ORDER < other.flow_order < record.flow_order
        and other.status == ApprovalStatus.PENDING
    )

    plan = ActionPlan(
        key=chain.key,
        action=decided,
        target=StatusChange(
            record_id=record.id,
            flow_order=record.flow_order,
            previous=record.status,
            new=new_status,
        ),
        comment=normalize_comment(comment),
        action_date=now,
        skipped=skipped,
        deleted=deleted,
    )

    logger.debug(
        "approval_action_planned",
        extra={
            "chain_key": str(chain.key),
            "record_id": str(record.id),
            "action": decided.value,
            "new_status": new_status.name,
            "skipped": len(skipped),
            "deleted": len(deleted),
        },
    )
    return plan


def plan_resubmission(
    chain: ApprovalChain,
    submitter_name: str,
    approver_names: Sequence[str],
    comment: str | None,
    now: datetime,
) -> ResubmissionPlan:
    """Open a new attempt right after the latest rejection.

    Any earlier resubmission above the rejection is replaced, so calling
    this twice in a row leaves only the second attempt.
    """
    validate_chain_key(chain.key)
    if chain.is_empty:
        raise ValidationError("report_no", f"no approval chain exists for {chain.key}")
    approvers = validate_participants(submitter_name, approver_names)

    rejection = chain.latest_rejection
    if rejection is None:
        raise NoRejectionToResubmitError(str(chain.key))

    return ResubmissionPlan(
        key=chain.key,
        rejection=rejection,
        deleted=chain.above(rejection.flow_order),
        records=_attempt(rejection.flow_order + 1, submitter_name, approvers, comment, now),
        now=now,
    )


# =========================================================================
# Structural checks
# =========================================================================


def chain_violations(chain: ApprovalChain) -> list[str]:
    """List every structural invariant the chain snapshot breaks.

    An empty chain is valid.  Returns an empty list when the chain is sound.
    """
    if chain.is_empty:
        return []

    violations: list[str] = []
    orders = [r.flow_order for r in chain.records]

    if len(set(orders)) != len(orders):
        violations.append(f"duplicate flow orders {sorted(orders)}")
    if any(o < 0 for o in orders):
        violations.append("negative flow order")
    if sorted(set(orders)) != list(range(0, max(orders) + 1)):
        violations.append(f"flow orders are not contiguous from 0: {sorted(orders)}")

    origin = [r for r in chain.records if r.flow_order == SUBMITTER_FLOW_ORDER]
    if len(origin) != 1:
        violations.append(f"expected exactly one submitter at flow order 0, found {len(origin)}")
    elif origin[0].status != ApprovalStatus.SUBMITTED:
        violations.append(f"submitter status is {origin[0].status.name}, expected SUBMITTED")

    completed = chain.with_status(ApprovalStatus.COMPLETED)
    if len(completed) > 1:
        violations.append(f"{len(completed)} records are COMPLETED")
    elif completed and completed[0].flow_order != chain.max_flow_order:
        violations.append(
            f"COMPLETED record at {completed[0].flow_order} is not the last flow order"
        )

    by_order = {r.flow_order: r for r in chain.records}
    for rejected in chain.with_status(ApprovalStatus.REJECTED):
        following = by_order.get(rejected.flow_order + 1)
        if following is not None and following.status != ApprovalStatus.SUBMITTED:
            violations.append(
                f"record after rejection at {rejected.flow_order} is "
                f"{following.status.name}, expected SUBMITTED"
            )

    latest = chain.latest_rejection
    if latest is not None:
        stale = [
            r.flow_order
            for r in chain.records
            if r.status == ApprovalStatus.PENDING and r.flow_order < latest.flow_order
        ]
        if stale:
            violations.append(f"PENDING records below latest rejection: {stale}")

    return violations
