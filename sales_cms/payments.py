"""
Payment Recorder Module

Validates and records incoming payments against a case. When a payment is
linked to an installment, the payment record and the installment allocation
are written in one atomic unit, so readers never see one without the other.

Concurrent allocations to the same installment are serialized by a
per-installment lock inside this process and by an optimistic version check
at the storage layer; a lost version race is retried with fresh data.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union
from contextlib import contextmanager
from enum import Enum
import logging
import threading
import uuid

from .currency import Money, Currency, Numeric, to_decimal, convert_to_base
from .dates import DateLike, parse_date, month_key
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .logging_config import log_action
from .errors import ValidationError, NotFoundError, ConcurrencyConflict
from .schedule import PaymentCategory, ScheduleManager
from .allocation import apply_payment_to_installment


logger = logging.getLogger("sales_cms.payments")


class PaymentChannel(Enum):
    """How the money was received"""
    TRANSFER = "transfer"
    CASH = "cash"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    OTHER = "other"


@dataclass
class Payment(StorageRecord):
    """
    A received (or refunded) amount belonging to a case

    amount is always positive and in the base currency; refunds are
    subtracted by the aggregator, not by sign.
    """
    case_id: str
    payment_date: date
    amount: Money
    category: PaymentCategory
    installment_id: Optional[str] = None
    channel: PaymentChannel = PaymentChannel.TRANSFER
    reference: Optional[str] = None
    bank_name: Optional[str] = None
    proof_urls: List[str] = field(default_factory=list)
    receipt_number: Optional[str] = None
    notes: Optional[str] = None
    amount_original: Optional[Money] = None  # as received, before FX conversion
    fx_rate_used: Optional[Decimal] = None
    audit_id: Optional[str] = None
    is_verified: bool = False
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    recorded_by: Optional[str] = None
    source: str = "manual"

    def __post_init__(self):
        if not self.amount.is_positive():
            raise ValidationError(f"Payment amount must be positive, got {self.amount.amount}",
                                  "payment", self.id, "validate")
        if self.category == PaymentCategory.REFUND and self.installment_id:
            raise ValidationError("Refunds cannot be linked to an installment",
                                  "payment", self.id, "validate")

    @property
    def payment_month(self) -> str:
        return month_key(self.payment_date)

    @property
    def is_refund(self) -> bool:
        return self.category == PaymentCategory.REFUND


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}' (expected one of: {allowed})",
                              "payment", None, "validate")


class PaymentRecorder:
    """
    Records payments and allocates them to installments
    """

    def __init__(
        self,
        storage: StorageInterface,
        schedule_manager: ScheduleManager,
        audit_trail: AuditTrail,
        max_retries: int = 3,
        base_currency: Currency = Currency.MXN,
        case_table: str = "cases"
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.storage = storage
        self.schedule_manager = schedule_manager
        self.audit_trail = audit_trail
        self.max_retries = max_retries
        self.base_currency = base_currency
        self.case_table = case_table
        self.table_name = "payments"

        # installment id -> [lock, holders]; dropped when the last holder leaves
        self._installment_locks: Dict[str, list] = {}
        self._locks_guard = threading.Lock()

    def record_payment(
        self,
        case_id: str,
        amount: Union[Money, Numeric],
        payment_date: DateLike,
        category: Union[PaymentCategory, str],
        installment_id: Optional[str] = None,
        channel: Union[PaymentChannel, str] = PaymentChannel.TRANSFER,
        reference: Optional[str] = None,
        bank_name: Optional[str] = None,
        proof_urls: Optional[List[str]] = None,
        receipt_number: Optional[str] = None,
        notes: Optional[str] = None,
        fx_rate: Optional[Numeric] = None,
        recorded_by: Optional[str] = None,
        source: str = "manual"
    ) -> Payment:
        """
        Record a payment, allocating it to an installment when one is given

        Args:
            case_id: Owning case
            amount: Positive amount; a non-base-currency Money needs fx_rate
            payment_date: Date the money was received
            category: Payment category (refund amounts are positive too)
            installment_id: Optional installment to allocate to
            channel: Transfer, cash, check...
            fx_rate: Base-currency units per unit of the received currency
            recorded_by: Staff member entering the payment

        Returns:
            Saved Payment

        Raises:
            ValidationError: Non-positive amount, bad category/channel/date,
                refund linked to an installment, installment of another case
            NotFoundError: Case or installment does not exist
            ConcurrencyConflict: Allocation kept losing version races after
                max_retries attempts
        """
        category = _coerce_enum(PaymentCategory, category, "category")
        channel = _coerce_enum(PaymentChannel, channel, "channel")
        paid_on = parse_date(payment_date, "payment_date")
        base_amount, amount_original, fx_rate_used = self._to_base_amount(amount, fx_rate)

        now = datetime.now(timezone.utc)
        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            case_id=case_id,
            payment_date=paid_on,
            amount=base_amount,
            category=category,
            installment_id=installment_id,
            channel=channel,
            reference=reference,
            bank_name=bank_name,
            proof_urls=list(proof_urls or []),
            receipt_number=receipt_number,
            notes=notes,
            amount_original=amount_original,
            fx_rate_used=fx_rate_used,
            recorded_by=recorded_by,
            source=source
        )

        if installment_id is None:
            with self.storage.atomic():
                self._require_case(case_id)
                self._log_recorded(payment)
                self._save_payment(payment)
        else:
            self.schedule_manager.require_installment(installment_id)
            with self._installment_lock(installment_id):
                self._record_with_allocation(payment)

        log_action(logger, "info", "Payment recorded", user_id=recorded_by,
                   action="record", resource=f"payment/{payment.id}",
                   extra={"case_id": case_id, "amount": str(base_amount.amount),
                          "category": category.value, "installment_id": installment_id})
        return payment

    def _record_with_allocation(self, payment: Payment) -> None:
        for attempt in range(1, self.max_retries + 1):
            try:
                with self.storage.atomic():
                    self._require_case(payment.case_id)
                    installment = self.schedule_manager.require_installment(payment.installment_id)
                    if installment.case_id != payment.case_id:
                        raise ValidationError(
                            f"Installment {installment.id} does not belong to case {payment.case_id}",
                            "installment", installment.id, "record_payment"
                        )

                    updated = apply_payment_to_installment(installment, payment.amount, payment.payment_date)
                    stored = self.schedule_manager.save_installment(updated, installment.version)

                    self._log_recorded(payment)
                    self.audit_trail.log_event(
                        event_type=AuditEventType.PAYMENT_ALLOCATED,
                        entity_type="installment",
                        entity_id=stored.id,
                        metadata={
                            "payment_id": payment.id,
                            "amount": str(payment.amount.amount),
                            "paid_amount": str(stored.paid_amount.amount),
                            "old_status": installment.status.value,
                            "new_status": stored.status.value
                        },
                        user_id=payment.recorded_by
                    )
                    self._save_payment(payment)
                return
            except ConcurrencyConflict:
                payment.audit_id = None
                if attempt == self.max_retries:
                    logger.error("Allocation failed after retries", extra={"extra": {
                        "installment_id": payment.installment_id, "attempts": attempt
                    }})
                    raise
                logger.warning("Allocation conflict, retrying", extra={"extra": {
                    "installment_id": payment.installment_id, "attempt": attempt
                }})

    def _log_recorded(self, payment: Payment) -> None:
        event = self.audit_trail.log_event(
            event_type=AuditEventType.PAYMENT_RECORDED,
            entity_type="payment",
            entity_id=payment.id,
            metadata={
                "case_id": payment.case_id,
                "amount": str(payment.amount.amount),
                "category": payment.category.value,
                "installment_id": payment.installment_id,
                "payment_date": payment.payment_date
            },
            user_id=payment.recorded_by
        )
        payment.audit_id = event.id if event else None

    def _to_base_amount(self, amount: Union[Money, Numeric], fx_rate: Optional[Numeric]):
        if not isinstance(amount, Money):
            amount = Money(to_decimal(amount), self.base_currency)

        if amount.currency == self.base_currency:
            return amount, None, None

        if fx_rate is None:
            raise ValidationError(
                f"Payment in {amount.currency.code} needs an exchange rate to {self.base_currency.code}",
                "payment", None, "record_payment"
            )
        converted = convert_to_base(amount, fx_rate, self.base_currency)
        return converted, amount, to_decimal(fx_rate)

    def _require_case(self, case_id: str) -> None:
        if not self.storage.exists(self.case_table, case_id):
            raise NotFoundError(f"Case {case_id} not found", "case", case_id, "record_payment")

    @contextmanager
    def _installment_lock(self, installment_id: str):
        with self._locks_guard:
            entry = self._installment_locks.get(installment_id)
            if entry is None:
                entry = self._installment_locks[installment_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._installment_locks[installment_id]

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        data = self.storage.load(self.table_name, payment_id)
        if data:
            return self._payment_from_dict(data)
        return None

    def get_payments(self, case_id: str) -> List[Payment]:
        """Payments of a case, newest first"""
        rows = self.storage.find(self.table_name, {"case_id": case_id})
        payments = [self._payment_from_dict(row) for row in rows]
        payments.sort(key=lambda p: (p.payment_date, p.created_at), reverse=True)
        return payments

    def get_all_payments(self) -> List[Payment]:
        return [self._payment_from_dict(row) for row in self.storage.load_all(self.table_name)]

    def recent_payments(self, limit: int = 20) -> List[Payment]:
        payments = self.get_all_payments()
        payments.sort(key=lambda p: (p.payment_date, p.created_at), reverse=True)
        return payments[:limit]

    def verify_payment(self, payment_id: str, verified_by: str) -> Payment:
        """Mark a payment as checked against the bank statement"""
        with self.storage.atomic():
            payment = self.get_payment(payment_id)
            if not payment:
                raise NotFoundError(f"Payment {payment_id} not found", "payment", payment_id, "verify")
            if payment.is_verified:
                raise ValidationError(f"Payment {payment_id} is already verified",
                                      "payment", payment_id, "verify")

            now = datetime.now(timezone.utc)
            payment.is_verified = True
            payment.verified_by = verified_by
            payment.verified_at = now
            payment.updated_at = now
            self._save_payment(payment)
            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_VERIFIED,
                entity_type="payment",
                entity_id=payment_id,
                metadata={"case_id": payment.case_id, "amount": str(payment.amount.amount)},
                user_id=verified_by
            )

        log_action(logger, "info", "Payment verified", user_id=verified_by,
                   action="verify", resource=f"payment/{payment_id}",
                   extra={"case_id": payment.case_id})
        return payment

    def _save_payment(self, payment: Payment) -> None:
        self.storage.save(self.table_name, payment.id, self._payment_to_dict(payment))

    def _payment_to_dict(self, payment: Payment) -> Dict:
        result = payment.to_dict()
        result['payment_date'] = payment.payment_date.isoformat()
        result['payment_month'] = payment.payment_month
        result['amount'] = str(payment.amount.amount)
        result['currency'] = payment.amount.currency.code
        result['category'] = payment.category.value
        result['channel'] = payment.channel.value
        result['fx_rate_used'] = str(payment.fx_rate_used) if payment.fx_rate_used is not None else None
        result['verified_at'] = payment.verified_at.isoformat() if payment.verified_at else None
        if payment.amount_original is not None:
            result['amount_original'] = str(payment.amount_original.amount)
            result['currency_original'] = payment.amount_original.currency.code
        return result

    def _payment_from_dict(self, data: Dict) -> Payment:
        amount_original = None
        if data.get('amount_original') is not None:
            amount_original = Money(Decimal(data['amount_original']),
                                    Currency[data['currency_original']])

        return Payment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            case_id=data['case_id'],
            payment_date=date.fromisoformat(data['payment_date']),
            amount=Money(Decimal(data['amount']), Currency[data.get('currency', 'MXN')]),
            category=PaymentCategory(data['category']),
            installment_id=data.get('installment_id'),
            channel=PaymentChannel(data.get('channel', 'transfer')),
            reference=data.get('reference'),
            bank_name=data.get('bank_name'),
            proof_urls=data.get('proof_urls') or [],
            receipt_number=data.get('receipt_number'),
            notes=data.get('notes'),
            amount_original=amount_original,
            fx_rate_used=Decimal(data['fx_rate_used']) if data.get('fx_rate_used') else None,
            audit_id=data.get('audit_id'),
            is_verified=data.get('is_verified', False),
            verified_by=data.get('verified_by'),
            verified_at=datetime.fromisoformat(data['verified_at']) if data.get('verified_at') else None,
            recorded_by=data.get('recorded_by'),
            source=data.get('source', 'manual')
        )
