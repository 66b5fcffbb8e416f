"""
Pure domain layer.

Data transfer objects and domain rules with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the injectable Clock abstraction itself)
- I/O

All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.approval import (
    ACTIONABLE_STATUSES,
    RECORD_TRANSITIONS,
    SETTLED_STATUSES,
    SUBMITTER_FLOW_ORDER,
    ApprovalAction,
    ApprovalChain,
    ApprovalRecord,
    ApprovalStatus,
    ChainKey,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "ACTIONABLE_STATUSES",
    "RECORD_TRANSITIONS",
    "SETTLED_STATUSES",
    "SUBMITTER_FLOW_ORDER",
    "ApprovalAction",
    "ApprovalChain",
    "ApprovalRecord",
    "ApprovalStatus",
    "ChainKey",
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
