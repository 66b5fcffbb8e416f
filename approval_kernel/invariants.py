"""
Kernel Invariants Contract.

These invariants are structural law for every approval chain.  No
configuration value may switch them off.

This module only declares them.  Enforcement is split between the pure
workflow engine (``approval_engines.workflow.chain_violations``), the
ApprovalWorkflowService, the ORM listener in
``approval_kernel.models.approval`` and the store constraints.
"""

from enum import Enum, unique


@unique
class ChainInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    SUBMITTER_AT_ORIGIN = "submitter_at_origin"
    """Flow order 0 exists once, is Submitted and never changes."""

    UNIQUE_POSITIONS = "unique_positions"
    """Flow orders within a chain are unique, non-negative and contiguous.
    Backed by UNIQUE(report_no, year, month, flow_order)."""

    SINGLE_COMPLETION = "single_completion"
    """At most one record is Completed and it holds the highest flow order."""

    RESUBMISSION_AFTER_REJECTION = "resubmission_after_rejection"
    """The record directly above a Rejected record, if any, is Submitted."""

    PERMANENT_HISTORY = "permanent_history"
    """Records at or below the latest rejection are never rewritten, and
    settled records are never updated.  Enforced by the service and the
    before_update listener."""

    SERIALIZED_MUTATION = "serialized_mutation"
    """create, act and resubmit on one chain are serialized through the
    locked, versioned chain head row."""


ALL_CHAIN_INVARIANTS: frozenset[ChainInvariant] = frozenset(ChainInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "approval_config",
    "scripts",
)

# The pure engines may not import these.
FORBIDDEN_ENGINE_IMPORTS: tuple[str, ...] = (
    "sqlalchemy",
    "approval_kernel.db",
    "approval_kernel.models",
    "approval_kernel.services",
    "approval_kernel.selectors",
    "approval_config",
)
