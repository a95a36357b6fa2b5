"""
Payment endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import get_system
from .schemas import RecordPaymentRequest, VerifyPaymentRequest, payment_response
from ..system import CaseManagementSystem
from ..errors import NotFoundError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_payment(
    request: RecordPaymentRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    """Record a payment, allocating it to an installment when one is given"""
    payment = system.payment_recorder.record_payment(
        case_id=request.case_id,
        amount=request.amount.to_money(system.base_currency),
        payment_date=request.payment_date,
        category=request.category,
        installment_id=request.installment_id,
        channel=request.channel,
        reference=request.reference,
        bank_name=request.bank_name,
        proof_urls=request.proof_urls,
        receipt_number=request.receipt_number,
        notes=request.notes,
        fx_rate=request.fx_rate,
        recorded_by=request.recorded_by,
        source="api"
    )

    result = payment_response(payment)
    if payment.installment_id:
        installment = system.schedule_manager.require_installment(payment.installment_id)
        result["installment_status"] = installment.status.value
    return result


@router.get("/recent")
async def recent_payments(limit: int = 20, system: CaseManagementSystem = Depends(get_system)):
    payments = system.payment_recorder.recent_payments(limit)
    return {"payments": [payment_response(p) for p in payments], "count": len(payments)}


@router.get("/{payment_id}")
async def get_payment(payment_id: str, system: CaseManagementSystem = Depends(get_system)):
    payment = system.payment_recorder.get_payment(payment_id)
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found", "payment", payment_id, "get")
    return payment_response(payment)


@router.post("/{payment_id}/verify")
async def verify_payment(
    payment_id: str,
    request: VerifyPaymentRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    """Mark a payment as checked against the bank statement"""
    payment = system.payment_recorder.verify_payment(payment_id, request.verified_by)
    return payment_response(payment)
