"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow service map failures onto user-visible responses
(rejected request, access denied, missing resource).  Matching on message
text is fragile, so every failure has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, transport-safe)
  3. Structured attributes (record id, user name, status, ...)

Example:
    try:
        service.act(record_id, "suzuki", ApprovalAction.APPROVE)
    except AuthorizationError as e:
        return 403, {"code": e.code, "assignee": e.assignee}
    except InvalidStateError as e:
        return 400, {"code": e.code, "reason": str(e)}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- ValidationError
    |   +-- UnknownActionError
    |
    +-- NotFoundError
    |   +-- ApprovalRecordNotFoundError
    |
    +-- AuthorizationError
    |
    +-- InvalidStateError
    |   +-- RecordNotActionableError
    |   +-- NoRejectionToResubmitError
    |   +-- ApprovalChainExistsError
    |
    +-- ConcurrencyError
    |   +-- ChainConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ChainIntegrityError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_FAILED           | Missing report number, no approvers, ...
                | UNKNOWN_ACTION              | Action other than approve / reject
----------------|-----------------------------|-----------------------------------------
Not found       | APPROVAL_RECORD_NOT_FOUND   | Record id does not exist
----------------|-----------------------------|-----------------------------------------
Authorization   | NOT_ASSIGNED_APPROVER       | Actor is not the record's assignee
----------------|-----------------------------|-----------------------------------------
State           | RECORD_NOT_ACTIONABLE       | Record is not Pending / Skipped
                | NO_REJECTION_TO_RESUBMIT    | Resubmit on a chain with no rejection
                | APPROVAL_CHAIN_EXISTS       | Create on a key that already has a chain
----------------|-----------------------------|-----------------------------------------
Concurrency     | CHAIN_CONFLICT              | Another writer changed the chain first
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update of a settled approval record
----------------|-----------------------------|-----------------------------------------
Integrity       | CHAIN_INTEGRITY_VIOLATION   | A planned change would break the chain

===============================================================================
HANDLING PATTERNS
===============================================================================

- ValidationError / InvalidStateError -> rejected request with the reason.
- AuthorizationError -> access denied.
- NotFoundError -> missing resource.
- ChainConflictError -> safe to retry the whole operation
  (see ``approval_kernel.db.engine.run_in_transaction``).
- ImmutabilityError / ChainIntegrityError -> server error; investigate.

Business-rule failures are expected outcomes.  They are logged as
structured events, never as unexpected errors, and never retried.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Validation


class ValidationError(ApprovalKernelError):
    """Required input is missing or malformed."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class UnknownActionError(ValidationError):
    """The requested action is neither approve nor reject."""

    code: str = "UNKNOWN_ACTION"

    def __init__(self, action: str):
        self.action = action
        super().__init__("action", f"unsupported action {action!r}")


# Lookup


class NotFoundError(ApprovalKernelError):
    """Base exception for missing resources."""

    code: str = "NOT_FOUND"


class ApprovalRecordNotFoundError(NotFoundError):
    """Approval record with the given id does not exist."""

    code: str = "APPROVAL_RECORD_NOT_FOUND"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Approval record not found: {record_id}")


# Authorization


class AuthorizationError(ApprovalKernelError):
    """The acting user is not the user assigned to the record."""

    code: str = "NOT_ASSIGNED_APPROVER"

    def __init__(self, record_id: str, acting_user: str, assignee: str):
        self.record_id = record_id
        self.acting_user = acting_user
        self.assignee = assignee
        super().__init__(
            f"User {acting_user!r} is not assigned to approval record {record_id}"
        )


# State


class InvalidStateError(ApprovalKernelError):
    """Base exception for operations not permitted in the current state."""

    code: str = "INVALID_STATE"


class RecordNotActionableError(InvalidStateError):
    """The record is not awaiting a decision (Pending or Skipped)."""

    code: str = "RECORD_NOT_ACTIONABLE"

    def __init__(self, record_id: str, status: str):
        self.record_id = record_id
        self.status = status
        super().__init__(
            f"Approval record {record_id} cannot be acted on in status {status}"
        )


class NoRejectionToResubmitError(InvalidStateError):
    """Resubmission requested for a chain that has not been rejected."""

    code: str = "NO_REJECTION_TO_RESUBMIT"

    def __init__(self, chain_key: str):
        self.chain_key = chain_key
        super().__init__(f"Approval chain {chain_key} has no rejection to resubmit")


class ApprovalChainExistsError(InvalidStateError):
    """A chain already exists for the report instance."""

    code: str = "APPROVAL_CHAIN_EXISTS"

    def __init__(self, chain_key: str):
        self.chain_key = chain_key
        super().__init__(f"Approval chain already exists for {chain_key}")


# Concurrency


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ChainConflictError(ConcurrencyError):
    """Another transaction modified the chain between read and write."""

    code: str = "CHAIN_CONFLICT"

    def __init__(self, chain_key: str):
        self.chain_key = chain_key
        super().__init__(
            f"Approval chain {chain_key} was modified by another transaction"
        )


# Immutability


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify a settled approval record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Integrity


class ChainIntegrityError(ApprovalKernelError):
    """A chain snapshot or planned change breaks a structural invariant."""

    code: str = "CHAIN_INTEGRITY_VIOLATION"

    def __init__(self, chain_key: str, violations: list[str]):
        self.chain_key = chain_key
        self.violations = violations
        super().__init__(
            f"Approval chain {chain_key} integrity violated: " + "; ".join(violations)
        )
