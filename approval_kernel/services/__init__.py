"""Services for the approval kernel (write side)."""

from approval_kernel.services.approval_workflow_service import ApprovalWorkflowService

__all__ = [
    "ApprovalWorkflowService",
]
