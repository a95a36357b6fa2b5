"""
Case Summary (Aggregator)

Case-level totals recomputed on every read from the installments and
payments of a case; never persisted, so they cannot drift.
"""

from decimal import Decimal, ROUND_HALF_UP
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

from .currency import Money, Currency, CENTAVO, HUNDRED
from .dates import Clock
from .schedule import Installment, InstallmentStatus, PaymentCategory, ScheduleManager
from .payments import Payment, PaymentRecorder


@dataclass(frozen=True)
class CaseSummary:
    total_scheduled: Money
    total_paid: Money
    total_refunded: Money
    balance: Money
    percent_paid: Decimal
    next_due_date: Optional[date]
    overdue_amount: Money
    installment_count: int = 0
    paid_installment_count: int = 0
    paid_by_category: Dict[str, Money] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "total_scheduled": str(self.total_scheduled.amount),
            "total_paid": str(self.total_paid.amount),
            "total_refunded": str(self.total_refunded.amount),
            "balance": str(self.balance.amount),
            "percent_paid": str(self.percent_paid),
            "next_due_date": self.next_due_date.isoformat() if self.next_due_date else None,
            "overdue_amount": str(self.overdue_amount.amount),
            "installment_count": self.installment_count,
            "paid_installment_count": self.paid_installment_count,
            "paid_by_category": {k: str(v.amount) for k, v in self.paid_by_category.items()},
        }


def summarize(installments: Iterable[Installment], payments: Iterable[Payment],
              today: date, currency: Currency = Currency.MXN) -> CaseSummary:
    """
    Aggregate a case snapshot

    balance = scheduled - paid + refunded. Overdue covers installments due
    before today that are pending, partial or overdue. Totals are in the
    installments' currency, or in currency when there are none. Does not
    change any installment status.
    """
    installments = list(installments)
    payments = list(payments)

    if installments:
        currency = installments[0].amount_due.currency
    zero = Money.zero(currency)
    total_scheduled = sum((i.amount_due for i in installments), zero)

    total_paid = zero
    total_refunded = zero
    by_category: Dict[str, Money] = {}
    for payment in payments:
        if payment.category == PaymentCategory.REFUND:
            total_refunded = total_refunded + payment.amount
        else:
            total_paid = total_paid + payment.amount
            key = payment.category.value
            by_category[key] = by_category.get(key, zero) + payment.amount

    balance = total_scheduled - total_paid + total_refunded

    if total_scheduled.is_positive():
        percent_paid = (total_paid.amount / total_scheduled.amount * HUNDRED).quantize(
            CENTAVO, rounding=ROUND_HALF_UP
        )
    else:
        percent_paid = Decimal('0.00')

    upcoming = [
        i.due_date for i in installments
        if i.status in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL) and i.due_date >= today
    ]
    next_due_date = min(upcoming) if upcoming else None

    overdue_amount = sum(
        (
            i.amount_due - i.paid_amount for i in installments
            if i.due_date < today and i.status in (
                InstallmentStatus.PENDING, InstallmentStatus.PARTIAL, InstallmentStatus.OVERDUE
            )
        ),
        zero
    )

    return CaseSummary(
        total_scheduled=total_scheduled,
        total_paid=total_paid,
        total_refunded=total_refunded,
        balance=balance,
        percent_paid=percent_paid,
        next_due_date=next_due_date,
        overdue_amount=overdue_amount,
        installment_count=len(installments),
        paid_installment_count=sum(1 for i in installments if i.status == InstallmentStatus.PAID),
        paid_by_category=dict(sorted(by_category.items()))
    )


class CaseSummarizer:
    """Loads a case snapshot and aggregates it as of the clock's today"""

    def __init__(self, schedule_manager: ScheduleManager, payment_recorder: PaymentRecorder,
                 clock: Clock, base_currency: Currency = Currency.MXN):
        self.schedule_manager = schedule_manager
        self.payment_recorder = payment_recorder
        self.clock = clock
        self.base_currency = base_currency

    def summarize_case(self, case_id: str, today: Optional[date] = None) -> CaseSummary:
        storage = self.schedule_manager.storage
        # One snapshot: no payment+allocation can land between the two reads
        with storage.atomic():
            installments = self.schedule_manager.get_schedule(case_id)
            payments = self.payment_recorder.get_payments(case_id)
        return summarize(installments, payments, today or self.clock.today(), self.base_currency)

    def summarize_cases(self, case_ids: List[str], today: Optional[date] = None) -> Dict[str, CaseSummary]:
        as_of = today or self.clock.today()
        return {case_id: self.summarize_case(case_id, as_of) for case_id in case_ids}
