"""
approval_engines -- pure decision logic for approval chains.

Every function here takes a loaded chain snapshot and returns a decision
or a derived view.  No clock access, no I/O, no database.
"""

from approval_engines.chain_view import (
    ChainView,
    FlowDirection,
    build_chain_view,
)
from approval_engines.workflow import (
    ActionPlan,
    CreationPlan,
    NewRecord,
    ResubmissionPlan,
    StatusChange,
    chain_violations,
    plan_action,
    plan_creation,
    plan_resubmission,
)

__all__ = [
    "ActionPlan",
    "ChainView",
    "CreationPlan",
    "FlowDirection",
    "NewRecord",
    "ResubmissionPlan",
    "StatusChange",
    "build_chain_view",
    "chain_violations",
    "plan_action",
    "plan_creation",
    "plan_resubmission",
]
