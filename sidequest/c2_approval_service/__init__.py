from sidequest.c2_approval_service.approval_service import ApprovalService

__all__ = ["ApprovalService"]
