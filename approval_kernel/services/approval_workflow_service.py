"""
ApprovalWorkflowService -- create, act on and resubmit approval chains.

Responsibility:
    Loads a chain snapshot under the chain lock, asks the pure workflow
    engine (``approval_engines.workflow``) for a plan, checks the planned
    result against the structural invariants and writes it through the ORM.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the pure
    engines.  Reads without locks belong in selectors/.

Invariants enforced:
    - One logical transaction per operation: the service only flushes; the
      caller commits or rolls back.  Every refusal is raised before the
      first write, so nothing is half applied.
    - Per-chain serialization: the ``approval_chains`` head row is read
      ``FOR UPDATE`` and its ``version`` bumped by every mutation.  A
      writer that lost a race on a backend without row locks gets
      ChainConflictError.
    - The chain written back never breaks ``chain_violations``.
    - create, reject and resubmit each emit one ``approval_notification``
      event naming the sender and recipients, after the write is flushed.

Failure modes:
    - ValidationError, ApprovalRecordNotFoundError, AuthorizationError,
      RecordNotActionableError, NoRejectionToResubmitError and
      ApprovalChainExistsError, as decided by the engine.  Logged as
      ``approval_action_refused`` and re-raised.
    - ChainIntegrityError if a plan would leave a malformed chain.
    - ChainConflictError if the head row version moved under us.
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_engines.workflow import (
    ActionPlan,
    CreationPlan,
    NewRecord,
    ResubmissionPlan,
    chain_violations,
    plan_action,
    plan_creation,
    plan_resubmission,
    validate_chain_key,
)
from approval_kernel.domain.approval import (
    ApprovalAction,
    ApprovalChain,
    ApprovalRecord,
    ChainKey,
)
from approval_kernel.domain.clock import Clock
from approval_kernel.exceptions import (
    ApprovalChainExistsError,
    ApprovalKernelError,
    ApprovalRecordNotFoundError,
    ChainConflictError,
    ChainIntegrityError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import ApprovalChainModel, ApprovalRecordModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.approval_workflow")
notification_logger = get_logger("notifications")

NOTIFY_SUBMITTED = "submitted"
NOTIFY_REJECTED = "rejected"
NOTIFY_RESUBMITTED = "resubmitted"


class ApprovalWorkflowService(BaseService[ApprovalRecordModel]):
    """
    Mutating operations on approval chains.

    Contract:
        ``create`` builds a new chain, ``act`` records an approve or reject
        by the assigned user, ``resubmit`` opens a new attempt after the
        latest rejection.  Each returns DTOs of what it wrote.

    Non-goals:
        - Does NOT commit.  Wrap calls in ``session_scope()`` or
          ``run_in_transaction()``.
        - Does NOT retry.  Conflicts propagate to the caller.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        require_reject_comment: bool = True,
    ):
        super().__init__(session, clock)
        self._require_reject_comment = require_reject_comment

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(
        self,
        report_no: str,
        year: int,
        month: int,
        submitter_name: str,
        approver_names: Sequence[str],
        comment: str | None = None,
    ) -> ApprovalChain:
        """
        Create the approval chain for a report instance.

        Postconditions:
            - Submitter at flow order 0 with status Submitted, comment and
              action date set.
            - Approvers at flow orders 1..N with status Pending.

        Raises:
            ValidationError: Blank report number or names, no approvers,
                month outside 1-12 or non-positive year.
            ApprovalChainExistsError: The report instance already has a chain.
        """
        key = ChainKey(report_no, year, month)
        now = self._clock.now()

        with LogContext.bind(actor=submitter_name, chain_key=str(key)):
            try:
                plan = plan_creation(key, submitter_name, approver_names, comment, now)
                head = self._lock_chain(key, now)
                chain, _ = self._load_chain(key)
                if not chain.is_empty:
                    raise ApprovalChainExistsError(str(key))
            except ApprovalKernelError as exc:
                self._log_refusal("create", exc)
                raise

            ids = self._verified_ids(plan, chain)
            created = self._add_records(plan, ids, now)
            self._touch(head, "create", now)
            self._flush(key)

            logger.info(
                "approval_chain_created",
                extra={
                    "chain_key": str(key),
                    "submitter": submitter_name,
                    "approver_count": len(created) - 1,
                },
            )
            self._notify(
                NOTIFY_SUBMITTED,
                key,
                submitter_name,
                [r.user_name for r in created[1:]],
                created[0].comment,
            )
            return ApprovalChain.of(key, created)

    def act(
        self,
        record_id: UUID | str,
        acting_user_name: str,
        action: ApprovalAction | str,
        comment: str | None = None,
    ) -> ApprovalRecord:
        """
        Approve or reject one approval record.

        Checks run in order -- not found, authorization, state, then
        action and comment validation -- before anything is written.

        Postconditions:
            - approve: the record is Completed if it holds the highest flow
              order, otherwise Approved.
            - reject: the record is Rejected and every record above it is
              deleted.
            - Either way, every other Pending record strictly between the
              submitter and the acting record becomes Skipped.

        Returns:
            The acted record after the change.
        """
        now = self._clock.now()

        with LogContext.bind(actor=acting_user_name, record_id=str(record_id)):
            try:
                record_uuid = self._parse_record_id(record_id)
                key = self._key_of(record_uuid)
                head = self._lock_chain(key, now)
                chain, models = self._load_chain(key)
                plan = plan_action(
                    chain,
                    record_uuid,
                    acting_user_name,
                    action,
                    comment,
                    now,
                    require_reject_comment=self._require_reject_comment,
                )
            except ApprovalKernelError as exc:
                self._log_refusal("act", exc)
                raise

            self._verify(key, plan.apply(chain))
            self._apply_action(plan, models)
            self._touch(head, plan.action.value, now)
            self._flush(key)

            logger.info(
                "approval_action_applied",
                extra={
                    "chain_key": str(key),
                    "record_id": str(record_uuid),
                    "action": plan.action.value,
                    "flow_order": plan.target.flow_order,
                    "previous_status": plan.target.previous.name,
                    "new_status": plan.target.new.name,
                    "is_terminal": plan.is_terminal,
                },
            )
            if plan.skipped:
                logger.info(
                    "approval_records_skipped",
                    extra={
                        "chain_key": str(key),
                        "flow_orders": [c.flow_order for c in plan.skipped],
                    },
                )
            if plan.deleted:
                logger.info(
                    "approval_chain_truncated",
                    extra={
                        "chain_key": str(key),
                        "above_flow_order": plan.target.flow_order,
                        "deleted_count": len(plan.deleted),
                    },
                )
            if plan.action == ApprovalAction.REJECT:
                self._notify(
                    NOTIFY_REJECTED,
                    key,
                    acting_user_name,
                    [chain.submitter.user_name],
                    plan.comment,
                )

            return models[record_uuid].to_dto()

    def resubmit(
        self,
        report_no: str,
        year: int,
        month: int,
        submitter_name: str,
        approver_names: Sequence[str],
        comment: str | None = None,
    ) -> ApprovalChain:
        """
        Open a new attempt after the latest rejection.

        Everything above the latest Rejected record is removed, then a
        Submitted record and fresh Pending approvers are appended.  Records
        at or below the rejection are left untouched.

        Raises:
            ValidationError: Empty chain or invalid participants.
            NoRejectionToResubmitError: No record is Rejected.
        """
        key = ChainKey(report_no, year, month)
        now = self._clock.now()

        with LogContext.bind(actor=submitter_name, chain_key=str(key)):
            try:
                validate_chain_key(key)
                head = self._lock_chain(key, now)
                chain, models = self._load_chain(key)
                plan = plan_resubmission(chain, submitter_name, approver_names, comment, now)
            except ApprovalKernelError as exc:
                self._log_refusal("resubmit", exc)
                raise

            ids = self._verified_ids(plan, chain)
            for stale in plan.deleted:
                self.session.delete(models[stale.id])
            # Unit of work inserts before it deletes; the new attempt reuses
            # the positions just freed.
            self._flush(key)

            created = self._add_records(plan, ids, now)
            self._touch(head, "resubmit", now)
            self._flush(key)

            logger.info(
                "approval_chain_resubmitted",
                extra={
                    "chain_key": str(key),
                    "rejected_flow_order": plan.rejection.flow_order,
                    "replaced_count": len(plan.deleted),
                    "submitter_flow_order": plan.records[0].flow_order,
                    "approver_count": len(plan.records) - 1,
                },
            )
            self._notify(
                NOTIFY_RESUBMITTED,
                key,
                submitter_name,
                [r.user_name for r in created[1:]],
                created[0].comment,
            )
            deleted_ids = {r.id for r in plan.deleted}
            kept = [r for r in chain.records if r.id not in deleted_ids]
            return ApprovalChain.of(key, [*kept, *created])

    # ------------------------------------------------------------------
    # Chain lock and snapshot
    # ------------------------------------------------------------------

    def _lock_chain(self, key: ChainKey, now: datetime) -> ApprovalChainModel:
        """Lock the chain head row, creating it on first use."""
        head = self._select_head(key)
        if head is not None:
            return head

        savepoint = self.session.begin_nested()
        try:
            head = ApprovalChainModel(
                report_no=key.report_no,
                year=key.year,
                month=key.month,
                version=0,
                created_at=now,
                updated_at=now,
            )
            self.session.add(head)
            self.session.flush()
            savepoint.commit()
            return head
        except IntegrityError:
            # Another transaction created the head first.
            logger.debug("chain_head_race_retry", extra={"chain_key": str(key)})
            savepoint.rollback()
            head = self._select_head(key)
            if head is None:
                raise
            return head

    def _select_head(self, key: ChainKey) -> ApprovalChainModel | None:
        return self.session.execute(
            select(ApprovalChainModel)
            .where(
                ApprovalChainModel.report_no == key.report_no,
                ApprovalChainModel.year == key.year,
                ApprovalChainModel.month == key.month,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _load_chain(
        self, key: ChainKey
    ) -> tuple[ApprovalChain, dict[UUID, ApprovalRecordModel]]:
        """Fresh snapshot of the chain plus its ORM rows by id."""
        rows = self.session.execute(
            select(ApprovalRecordModel)
            .where(
                ApprovalRecordModel.report_no == key.report_no,
                ApprovalRecordModel.year == key.year,
                ApprovalRecordModel.month == key.month,
            )
            .order_by(ApprovalRecordModel.flow_order)
            .execution_options(populate_existing=True)
        ).scalars().all()
        models = {row.id: row for row in rows}
        return ApprovalChain.of(key, [row.to_dto() for row in rows]), models

    def _key_of(self, record_id: UUID) -> ChainKey:
        record = self.session.get(ApprovalRecordModel, record_id)
        if record is None:
            raise ApprovalRecordNotFoundError(str(record_id))
        return record.key

    @staticmethod
    def _parse_record_id(record_id: UUID | str) -> UUID:
        if isinstance(record_id, UUID):
            return record_id
        try:
            return UUID(str(record_id))
        except ValueError:
            raise ApprovalRecordNotFoundError(str(record_id)) from None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _verified_ids(
        self,
        plan: CreationPlan | ResubmissionPlan,
        chain: ApprovalChain,
    ) -> list[UUID]:
        """Allocate ids for the planned records and check the result."""
        ids = [uuid4() for _ in plan.records]
        self._verify(plan.key, plan.apply(chain, id_factory=iter(ids).__next__))
        return ids

    def _add_records(
        self,
        plan: CreationPlan | ResubmissionPlan,
        ids: list[UUID],
        now: datetime,
    ) -> list[ApprovalRecord]:
        created: list[ApprovalRecord] = []
        for new_record, record_id in zip(plan.records, ids):
            self.session.add(self._to_model(plan.key, new_record, record_id, now))
            created.append(new_record.materialize(plan.key, record_id, now))
        return created

    def _apply_action(
        self,
        plan: ActionPlan,
        models: dict[UUID, ApprovalRecordModel],
    ) -> None:
        target = models[plan.target.record_id]
        target.status = int(plan.target.new)
        target.comment = plan.comment
        target.action_date = plan.action_date
        target.updated_at = plan.action_date

        for change in plan.skipped:
            skipped = models[change.record_id]
            skipped.status = int(change.new)
            skipped.updated_at = plan.action_date

        for record in plan.deleted:
            self.session.delete(models[record.id])

    @staticmethod
    def _to_model(
        key: ChainKey,
        new_record: NewRecord,
        record_id: UUID,
        now: datetime,
    ) -> ApprovalRecordModel:
        return ApprovalRecordModel(
            id=record_id,
            report_no=key.report_no,
            year=key.year,
            month=key.month,
            user_name=new_record.user_name,
            flow_order=new_record.flow_order,
            status=int(new_record.status),
            comment=new_record.comment,
            action_date=new_record.action_date,
            created_at=now,
            updated_at=now,
        )

    def _touch(self, head: ApprovalChainModel, action: str, now: datetime) -> None:
        head.version += 1
        head.last_action = action
        head.updated_at = now

    def _flush(self, key: ChainKey) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning("chain_conflict_detected", extra={"chain_key": str(key)})
            raise ChainConflictError(str(key)) from exc

    def _verify(self, key: ChainKey, chain: ApprovalChain) -> None:
        violations = chain_violations(chain)
        if violations:
            logger.error(
                "chain_integrity_violation",
                extra={"chain_key": str(key), "violations": violations},
            )
            raise ChainIntegrityError(str(key), violations)

    @staticmethod
    def _notify(
        action_type: str,
        key: ChainKey,
        from_user: str,
        to_users: list[str],
        comment: str | None,
    ) -> None:
        """Record who must be told about a submission, rejection or resubmission."""
        notification_logger.info(
            "approval_notification",
            extra={
                "action_type": action_type,
                "chain_key": str(key),
                "from_user": from_user,
                "to_users": to_users,
                "comment": comment,
            },
        )

    @staticmethod
    def _log_refusal(operation: str, exc: ApprovalKernelError) -> None:
        logger.info(
            "approval_action_refused",
            extra={
                "operation": operation,
                "error_code": exc.code,
                "reason": str(exc),
            },
        )
