"""
Allocation Engine

Applies a recorded payment amount to an installment's paid-so-far total.
Pure functions: the caller owns persistence, locking and retries.
"""

from dataclasses import replace
from typing import Iterable, Optional

from .currency import Money
from .dates import DateLike, parse_date
from .errors import ValidationError
from .schedule import Installment, InstallmentStatus


def apply_payment_to_installment(installment: Installment, amount: Money,
                                 payment_date: DateLike) -> Installment:
    """
    Apply a payment to an installment

    new paid = paid + amount; paid when it reaches amount_due, partial
    otherwise. Overpayment is kept on the installment as-is. A paid
    installment never regresses and a waived one stays waived. The overdue
    label is replaced by partial or paid.

    Args:
        installment: Installment as last read from storage
        amount: Positive amount in the installment's currency
        payment_date: Date the money was received

    Returns:
        A new Installment; the input is not mutated

    Raises:
        ValidationError: If amount is not positive or the currency differs
    """
    if not isinstance(amount, Money):
        raise ValidationError("Payment amount must be Money", "installment", installment.id, "allocate")
    if not amount.is_positive():
        raise ValidationError(f"Payment amount must be positive, got {amount.amount}",
                              "installment", installment.id, "allocate")
    if amount.currency != installment.amount_due.currency:
        raise ValidationError(
            f"Cannot apply {amount.currency.code} to a {installment.amount_due.currency.code} installment",
            "installment", installment.id, "allocate"
        )

    new_paid = installment.paid_amount + amount

    if installment.status in (InstallmentStatus.PAID, InstallmentStatus.WAIVED):
        status = installment.status
    elif new_paid >= installment.amount_due:
        status = InstallmentStatus.PAID
    else:
        status = InstallmentStatus.PARTIAL

    return replace(
        installment,
        paid_amount=new_paid,
        paid_date=parse_date(payment_date, "payment_date"),
        status=status
    )


def remaining_due(installment: Installment) -> Money:
    """Amount still owed on an installment, never negative"""
    remaining = installment.amount_due - installment.paid_amount
    if remaining.is_negative():
        return Money.zero(remaining.currency)
    return remaining


def next_unpaid_installment(installments: Iterable[Installment]) -> Optional[Installment]:
    """
    First installment in sequence order with status pending or partial

    A convenience for callers choosing which installment to link a payment
    to. Payment recording never links automatically.
    """
    candidates = [
        i for i in installments
        if i.status in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda i: i.sequence_index)
