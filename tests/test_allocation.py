"""
Test suite for the allocation engine
"""

import pytest
from datetime import date
from decimal import Decimal

from sales_cms.currency import Money, Currency
from sales_cms.errors import ValidationError
from sales_cms.schedule import Installment, InstallmentStatus, PaymentCategory
from sales_cms.allocation import apply_payment_to_installment, remaining_due, next_unpaid_installment


def mxn(amount) -> Money:
    return Money(Decimal(str(amount)))


def make_installment(amount_due="16666.67", paid="0", status=InstallmentStatus.PENDING,
                     index=2) -> Installment:
    return Installment(
        case_id="case-1",
        sequence_index=index,
        category=PaymentCategory.MENSUALIDAD,
        label=f"Mensualidad {index - 1}",
        amount_due=mxn(amount_due),
        due_date=date(2025, 3, 15),
        status=status,
        paid_amount=mxn(paid)
    )


class TestApplyPayment:
    """Test applying amounts to a single installment"""

    def test_exact_payment_marks_paid(self):
        installment = make_installment()
        result = apply_payment_to_installment(installment, mxn("16666.67"), "2025-03-10")

        assert result.status == InstallmentStatus.PAID
        assert result.paid_amount == mxn("16666.67")
        assert result.paid_date == date(2025, 3, 10)
        assert remaining_due(result) == Money.zero()

    def test_input_is_not_mutated(self):
        installment = make_installment()
        apply_payment_to_installment(installment, mxn("100"), "2025-03-10")
        assert installment.paid_amount == Money.zero()
        assert installment.status == InstallmentStatus.PENDING

    def test_partial_then_paid(self):
        installment = make_installment(amount_due="15000")
        first = apply_payment_to_installment(installment, mxn("10000"), date(2025, 3, 1))
        assert first.status == InstallmentStatus.PARTIAL
        assert remaining_due(first) == mxn("5000")

        second = apply_payment_to_installment(first, mxn("10000"), date(2025, 3, 2))
        assert second.status == InstallmentStatus.PAID
        assert second.paid_amount == mxn("20000")

    def test_overpayment_is_kept(self):
        result = apply_payment_to_installment(make_installment(amount_due="100"), mxn("150"), "2025-03-10")
        assert result.paid_amount == mxn("150")
        assert remaining_due(result) == Money.zero()

    def test_paid_never_regresses(self):
        paid = make_installment(amount_due="100", paid="100", status=InstallmentStatus.PAID)
        result = apply_payment_to_installment(paid, mxn("1"), "2025-03-10")
        assert result.status == InstallmentStatus.PAID
        assert result.paid_amount == mxn("101")

    def test_waived_stays_waived(self):
        waived = make_installment(status=InstallmentStatus.WAIVED)
        result = apply_payment_to_installment(waived, mxn("500"), "2025-03-10")
        assert result.status == InstallmentStatus.WAIVED
        assert result.paid_amount == mxn("500")

    def test_overdue_becomes_partial(self):
        overdue = make_installment(status=InstallmentStatus.OVERDUE)
        result = apply_payment_to_installment(overdue, mxn("1"), "2025-04-01")
        assert result.status == InstallmentStatus.PARTIAL

    def test_paid_amount_is_monotonic(self):
        installment = make_installment(amount_due="1000")
        previous = installment.paid_amount
        for amount in ("0.01", "250", "749.99", "5"):
            installment = apply_payment_to_installment(installment, mxn(amount), "2025-03-10")
            assert installment.paid_amount > previous
            previous = installment.paid_amount

    @pytest.mark.parametrize("amount", ["0", "-10"])
    def test_rejects_non_positive_amount(self, amount):
        with pytest.raises(ValidationError):
            apply_payment_to_installment(make_installment(), mxn(amount), "2025-03-10")

    def test_rejects_other_currency(self):
        with pytest.raises(ValidationError):
            apply_payment_to_installment(make_installment(), Money(Decimal('10'), Currency.USD),
                                         "2025-03-10")

    def test_rejects_plain_number(self):
        with pytest.raises(ValidationError):
            apply_payment_to_installment(make_installment(), Decimal('10'), "2025-03-10")


class TestNextUnpaid:

    def test_picks_lowest_open_index(self):
        installments = [
            make_installment(index=3),
            make_installment(index=0, status=InstallmentStatus.PAID),
            make_installment(index=2, status=InstallmentStatus.PARTIAL),
            make_installment(index=1, status=InstallmentStatus.WAIVED),
        ]
        assert next_unpaid_installment(installments).sequence_index == 2

    def test_none_when_all_settled(self):
        installments = [make_installment(status=InstallmentStatus.PAID)]
        assert next_unpaid_installment(installments) is None
