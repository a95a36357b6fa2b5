"""
Sale case endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .deps import get_system
from .schemas import (
    CreateCaseRequest, CaseStatusRequest, AttachDocumentRequest, GenerateScheduleRequest,
    WaiveInstallmentRequest, parse_enum, parse_optional_date,
    case_response, installment_response, payment_response, approval_response
)
from ..system import CaseManagementSystem
from ..cases import CaseStatus
from ..errors import NotFoundError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_case(
    request: CreateCaseRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    """Open a sale case and queue it for approval"""
    fields = request.model_dump(exclude={"requested_by"}, exclude_none=True)
    case, approval = system.open_case(requested_by=request.requested_by, **fields)
    return {
        "case": case_response(case),
        "approval": approval_response(approval),
        "message": "Case created and awaiting approval"
    }


@router.get("")
async def list_cases(
    status: Optional[str] = None,
    block: Optional[str] = None,
    search: Optional[str] = None,
    system: CaseManagementSystem = Depends(get_system)
):
    case_status = parse_enum(CaseStatus, status, "status") if status else None
    cases = system.case_manager.list_cases(status=case_status, block=block, search=search)
    return {"cases": [case_response(c) for c in cases], "count": len(cases)}


@router.get("/by-number/{case_number}")
async def get_case_by_number(case_number: str, system: CaseManagementSystem = Depends(get_system)):
    case = system.case_manager.get_case_by_number(case_number)
    if not case:
        raise NotFoundError(f"Case {case_number} not found", "case", case_number, "get")
    return case_response(case)


@router.get("/{case_id}")
async def get_case(case_id: str, system: CaseManagementSystem = Depends(get_system)):
    return case_response(system.case_manager.require_case(case_id))


@router.post("/{case_id}/status")
async def update_case_status(
    case_id: str,
    request: CaseStatusRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    """Move a case through its lifecycle"""
    case = system.case_manager.update_status(case_id, request.status,
                                             notes=request.notes, user_id=request.user_id)
    return case_response(case)


@router.post("/{case_id}/documents")
async def attach_document(
    case_id: str,
    request: AttachDocumentRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    case = system.case_manager.attach_document(case_id, request.kind, request.url,
                                               user_id=request.user_id)
    return case_response(case)


@router.post("/{case_id}/schedule", status_code=status.HTTP_201_CREATED)
async def generate_schedule(
    case_id: str,
    request: GenerateScheduleRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    """Generate the payment schedule of a case opened without one"""
    schedule = system.case_manager.generate_case_schedule(
        case_id, start_date=request.start_date, user_id=request.user_id
    )
    return {"case_id": case_id, "installments": [installment_response(i) for i in schedule]}


@router.get("/{case_id}/schedule")
async def get_schedule(case_id: str, system: CaseManagementSystem = Depends(get_system)):
    system.case_manager.require_case(case_id)
    schedule = system.schedule_manager.get_schedule(case_id)
    return {"case_id": case_id, "installments": [installment_response(i) for i in schedule]}


@router.post("/{case_id}/schedule/{installment_id}/waive")
async def waive_installment(
    case_id: str,
    installment_id: str,
    request: WaiveInstallmentRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    installment = system.schedule_manager.require_installment(installment_id)
    if installment.case_id != case_id:
        raise NotFoundError(f"Installment {installment_id} not found on case {case_id}",
                            "installment", installment_id, "waive")
    waived = system.schedule_manager.waive_installment(installment_id, request.reason,
                                                       user_id=request.user_id)
    return installment_response(waived)


@router.get("/{case_id}/summary")
async def get_case_summary(
    case_id: str,
    as_of: Optional[str] = None,
    system: CaseManagementSystem = Depends(get_system)
):
    """Scheduled, paid, refunded and outstanding totals of a case"""
    case = system.case_manager.require_case(case_id)
    summary = system.summarizer.summarize_case(case_id, parse_optional_date(as_of, "as_of"))
    return {"case_id": case_id, "case_number": case.case_number, **summary.to_dict()}


@router.get("/{case_id}/payments")
async def get_case_payments(case_id: str, system: CaseManagementSystem = Depends(get_system)):
    system.case_manager.require_case(case_id)
    payments = system.payment_recorder.get_payments(case_id)
    return {"case_id": case_id, "payments": [payment_response(p) for p in payments]}


@router.get("/{case_id}/approvals")
async def get_case_approvals(case_id: str, system: CaseManagementSystem = Depends(get_system)):
    system.case_manager.require_case(case_id)
    requests = system.approval_manager.list_for_case(case_id)
    return {"case_id": case_id, "approvals": [approval_response(r) for r in requests]}


@router.get("/{case_id}/history")
async def get_case_history(
    case_id: str,
    limit: int = 100,
    system: CaseManagementSystem = Depends(get_system)
):
    """Audit events recorded against a case"""
    system.case_manager.require_case(case_id)
    events = system.audit_trail.get_events_for_entity("case", case_id, limit)
    return {
        "case_id": case_id,
        "events": [
            {
                "id": e.id,
                "event_type": e.event_type.value,
                "created_at": e.created_at.isoformat(),
                "user_id": e.user_id,
                "metadata": e.metadata,
            }
            for e in events
        ]
    }
