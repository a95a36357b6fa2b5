"""
Pydantic schemas for API requests and responses
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field

from ..currency import Money, Currency, to_decimal
from ..dates import parse_date
from ..errors import ValidationError
from ..inventory import Unit
from ..clients import Client, Broker
from ..cases import SaleCase
from ..schedule import Installment
from ..payments import Payment
from ..approvals import ApprovalRequest


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: Optional[str] = Field(None, description="Currency code (MXN, USD); defaults to the base currency")

    def to_money(self, default: Currency = Currency.MXN) -> Money:
        if self.currency is None:
            return Money(to_decimal(self.amount), default)
        if self.currency not in Currency.__members__:
            raise ValidationError(f"Unsupported currency '{self.currency}'")
        return Money(to_decimal(self.amount), Currency[self.currency])

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


def parse_enum(enum_cls, value: str, field_name: str):
    """Map a query or body string onto an enum, as a 400 rather than a 500"""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}' (expected one of: {allowed})")


def parse_optional_date(value: Optional[str], field_name: str) -> Optional[date]:
    return parse_date(value, field_name) if value else None


def _money(value: Optional[Money]) -> Optional[Dict[str, str]]:
    if value is None:
        return None
    return {"amount": str(value.amount), "currency": value.currency.code}


def _decimal(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


# Inventory

class CreateUnitRequest(BaseModel):
    block: str
    lot: str
    area_m2: Optional[str] = None
    list_price: Optional[str] = None
    phase: Optional[str] = None
    notes: Optional[str] = None


class BlockUnitRequest(BaseModel):
    reason: Optional[str] = None


def unit_response(unit: Unit) -> Dict[str, Any]:
    return {
        "id": unit.id,
        "block": unit.block,
        "lot": unit.lot,
        "label": unit.label,
        "area_m2": _decimal(unit.area_m2),
        "list_price": _money(unit.list_price),
        "status": unit.status.value,
        "phase": unit.phase,
        "notes": unit.notes,
    }


# Clients and brokers

class CreateClientRequest(BaseModel):
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    secondary_name: Optional[str] = None
    secondary_email: Optional[str] = None
    secondary_phone: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = "Mexico"
    postal_code: Optional[str] = None
    nationality: Optional[str] = None
    rfc: Optional[str] = None
    is_llc: bool = False
    llc_name: Optional[str] = None
    notes: Optional[str] = None


class UpdateClientRequest(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    secondary_name: Optional[str] = None
    secondary_email: Optional[str] = None
    secondary_phone: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    notes: Optional[str] = None


class CreateBrokerRequest(BaseModel):
    full_name: str
    agency: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    default_commission_pct: str = "5.00"


def client_response(client: Client) -> Dict[str, Any]:
    return {
        "id": client.id,
        "full_name": client.full_name,
        "display_name": client.display_name,
        "email": client.email,
        "phone": client.phone,
        "secondary_name": client.secondary_name,
        "secondary_email": client.secondary_email,
        "is_llc": client.is_llc,
        "llc_name": client.llc_name,
        "notes": client.notes,
    }


def broker_response(broker: Broker) -> Dict[str, Any]:
    return {
        "id": broker.id,
        "full_name": broker.full_name,
        "agency": broker.agency,
        "email": broker.email,
        "phone": broker.phone,
        "default_commission_pct": str(broker.default_commission_pct),
        "active": broker.active,
    }


# Cases

class CreateCaseRequest(BaseModel):
    unit_id: str
    client_id: str
    sale_price: str = Field(..., description="Sale price in MXN as decimal string")
    plan_name: str = "30/60/10"
    down_payment_pct: Optional[str] = None
    monthly_count: Optional[int] = None
    final_payment_pct: Optional[str] = None
    broker_id: Optional[str] = None
    broker_commission_pct: Optional[str] = None
    reservation_amount: Optional[str] = None
    offer_date: Optional[str] = None
    schedule_start: Optional[str] = None
    generate_schedule: bool = True
    notes: Optional[str] = None
    requested_by: Optional[str] = None


class CaseStatusRequest(BaseModel):
    status: str
    notes: Optional[str] = None
    user_id: Optional[str] = None


class AttachDocumentRequest(BaseModel):
    kind: str
    url: str
    user_id: Optional[str] = None


class GenerateScheduleRequest(BaseModel):
    start_date: Optional[str] = None
    user_id: Optional[str] = None


def case_response(case: SaleCase) -> Dict[str, Any]:
    return {
        "id": case.id,
        "case_number": case.case_number,
        "unit_id": case.unit_id,
        "unit": case.unit_label,
        "client_id": case.client_id,
        "broker_id": case.broker_id,
        "status": case.status.value,
        "sale_price": _money(case.sale_price),
        "list_price": _money(case.list_price),
        "discount_pct": _decimal(case.discount_pct),
        "plan_name": case.plan_name,
        "reservation_amount": _money(case.reservation_amount),
        "down_payment_pct": _decimal(case.down_payment_pct),
        "down_payment": _money(case.down_payment),
        "monthly_count": case.monthly_count,
        "monthly_amount": _money(case.monthly_amount),
        "final_payment_pct": _decimal(case.final_payment_pct),
        "final_payment": _money(case.final_payment),
        "broker_commission_pct": _decimal(case.broker_commission_pct),
        "broker_commission": _money(case.broker_commission),
        "documents": dict(case.documents),
        "offer_date": _iso(case.offer_date),
        "contract_drafted_at": _iso(case.contract_drafted_at),
        "executed_at": _iso(case.executed_at),
        "cancelled_at": _iso(case.cancelled_at),
        "notes": case.notes,
    }


def installment_response(installment: Installment) -> Dict[str, Any]:
    return {
        "id": installment.id,
        "sequence_index": installment.sequence_index,
        "category": installment.category.value,
        "label": installment.label,
        "amount_due": str(installment.amount_due.amount),
        "paid_amount": str(installment.paid_amount.amount),
        "due_date": installment.due_date.isoformat(),
        "status": installment.status.value,
        "paid_date": _iso(installment.paid_date),
        "version": installment.version,
    }


# Payments

class RecordPaymentRequest(BaseModel):
    case_id: str
    amount: MoneyModel
    payment_date: str
    category: str
    installment_id: Optional[str] = None
    channel: str = "transfer"
    fx_rate: Optional[str] = None
    reference: Optional[str] = None
    bank_name: Optional[str] = None
    proof_urls: List[str] = Field(default_factory=list)
    receipt_number: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    verified_by: str


class WaiveInstallmentRequest(BaseModel):
    reason: Optional[str] = None
    user_id: Optional[str] = None


def payment_response(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "case_id": payment.case_id,
        "installment_id": payment.installment_id,
        "payment_date": payment.payment_date.isoformat(),
        "payment_month": payment.payment_month,
        "amount": MoneyModel.from_money(payment.amount).model_dump(),
        "amount_original": _money(payment.amount_original),
        "fx_rate_used": _decimal(payment.fx_rate_used),
        "category": payment.category.value,
        "channel": payment.channel.value,
        "reference": payment.reference,
        "receipt_number": payment.receipt_number,
        "audit_id": payment.audit_id,
        "is_verified": payment.is_verified,
        "verified_by": payment.verified_by,
    }


# Approvals

class CreateApprovalRequest(BaseModel):
    case_id: str
    request_type: str
    requested_by: Optional[str] = None
    notes: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class ReviewApprovalRequest(BaseModel):
    reviewed_by: str
    notes: Optional[str] = None


def approval_response(request: ApprovalRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "case_id": request.case_id,
        "request_type": request.request_type.value,
        "status": request.status.value,
        "requested_by": request.requested_by,
        "request_notes": request.request_notes,
        "payload": request.payload,
        "reviewed_by": request.reviewed_by,
        "reviewed_at": _iso(request.reviewed_at),
        "review_notes": request.review_notes,
        "created_at": request.created_at.isoformat(),
    }
