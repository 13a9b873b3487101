"""Review workflow module."""

from .workflow import ApprovalResult, ReviewWorkflow

__all__ = ["ApprovalResult", "ReviewWorkflow"]
