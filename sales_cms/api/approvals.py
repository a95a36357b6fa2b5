"""
Approval queue endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .deps import get_system
from .schemas import CreateApprovalRequest, ReviewApprovalRequest, parse_enum, approval_response
from ..system import CaseManagementSystem
from ..approvals import ApprovalRequestType


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def request_approval(
    request: CreateApprovalRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    approval = system.approval_manager.request_approval(
        case_id=request.case_id,
        request_type=parse_enum(ApprovalRequestType, request.request_type, "request_type"),
        requested_by=request.requested_by,
        notes=request.notes,
        payload=request.payload
    )
    return approval_response(approval)


@router.get("/pending")
async def list_pending(
    request_type: Optional[str] = None,
    system: CaseManagementSystem = Depends(get_system)
):
    """Pending requests, oldest first"""
    kind = parse_enum(ApprovalRequestType, request_type, "request_type") if request_type else None
    requests = system.approval_manager.list_pending(kind)
    return {"approvals": [approval_response(r) for r in requests], "count": len(requests)}


@router.get("/{approval_id}")
async def get_approval(approval_id: str, system: CaseManagementSystem = Depends(get_system)):
    return approval_response(system.approval_manager.require_approval(approval_id))


@router.post("/{approval_id}/approve")
async def approve(
    approval_id: str,
    request: ReviewApprovalRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    approval = system.approval_manager.approve(approval_id, request.reviewed_by, request.notes)
    return approval_response(approval)


@router.post("/{approval_id}/reject")
async def reject(
    approval_id: str,
    request: ReviewApprovalRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    approval = system.approval_manager.reject(approval_id, request.reviewed_by, request.notes)
    return approval_response(approval)
