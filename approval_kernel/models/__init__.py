"""ORM models for the approval kernel."""

from approval_kernel.models.approval import ApprovalChainModel, ApprovalRecordModel

__all__ = [
    "ApprovalChainModel",
    "ApprovalRecordModel",
]
