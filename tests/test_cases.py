"""
Test suite for sale cases

Tests case intake against inventory, plan resolution, schedule generation,
lifecycle transitions and case numbering.
"""

import pytest
from datetime import date
from decimal import Decimal

from sales_cms.config import SalesCMSConfig
from sales_cms.currency import Money, Currency
from sales_cms.dates import FixedClock
from sales_cms.storage import InMemoryStorage
from sales_cms.system import CaseManagementSystem
from sales_cms.audit import AuditEventType
from sales_cms.errors import ValidationError, NotFoundError
from sales_cms.inventory import UnitStatus
from sales_cms.schedule import PaymentCategory, InstallmentStatus
from sales_cms.cases import CaseStatus, format_case_number


def mxn(amount) -> Money:
    return Money(Decimal(str(amount)))


@pytest.fixture
def system():
    config = SalesCMSConfig(storage_backend="memory")
    return CaseManagementSystem(config, storage=InMemoryStorage(), clock=FixedClock("2025-01-15"))


@pytest.fixture
def unit(system):
    return system.unit_manager.create_unit("C4", "23", list_price=mxn("1250000"))


@pytest.fixture
def client(system):
    return system.client_manager.create_client("Ana Torres", email="ana@example.com")


class TestCaseNumbering:

    def test_format_case_number(self):
        assert format_case_number("MANA88-AK-", 7) == "MANA88-AK-0007"
        assert format_case_number("X-", 12345, width=3) == "X-12345"

    def test_sequential_numbers(self, system, client):
        first = system.unit_manager.create_unit("C4", "1")
        second = system.unit_manager.create_unit("C4", "2")
        a = system.case_manager.create_case(first.id, client.id, "1000000")
        b = system.case_manager.create_case(second.id, client.id, "1000000")
        assert a.case_number == "MANA88-AK-0001"
        assert b.case_number == "MANA88-AK-0002"
        assert system.case_manager.get_case_by_number("MANA88-AK-0002").id == b.id


class TestCreateCase:

    def test_create_with_preset(self, system, unit, client):
        case = system.case_manager.create_case(unit.id, client.id, mxn("1000000"), user_id="staff-1")

        assert case.status == CaseStatus.PENDING
        assert case.unit_label == "C4-23"
        assert case.offer_date == date(2025, 1, 15)
        assert case.down_payment == mxn("300000")
        assert case.monthly_count == 36
        assert case.monthly_amount == mxn("16666.67")
        assert case.final_payment == mxn("100000")
        assert case.reservation_amount == mxn("50000")
        assert case.discount_pct == Decimal('20.00')

        assert system.unit_manager.require_unit(unit.id).status == UnitStatus.RESERVED

        schedule = system.schedule_manager.get_schedule(case.id)
        assert len(schedule) == 39
        assert schedule[0].category == PaymentCategory.RESERVA
        assert schedule[0].due_date == date(2025, 1, 15)
        assert schedule[1].amount_due == mxn("250000")
        assert schedule[-1].label == "Entrega (10%)"

        event = system.audit_trail.get_events_by_type(AuditEventType.CASE_CREATED)[0]
        assert event.user_id == "staff-1"
        assert event.metadata["rounding_residual"] == "-0.12"

    def test_stored_case_round_trips(self, system, unit, client):
        case = system.case_manager.create_case(unit.id, client.id, "1000000")
        assert system.case_manager.require_case(case.id) == case

    def test_custom_plan(self, system, unit, client):
        case = system.case_manager.create_case(
            unit.id, client.id, "800000", plan_name="Custom",
            down_payment_pct="25", monthly_count=12, reservation_amount="20000",
            schedule_start="2025-02-01"
        )
        assert case.final_payment_pct == Decimal('10')
        assert case.monthly_amount == mxn("43333.33")
        schedule = system.schedule_manager.get_schedule(case.id)
        assert schedule[0].due_date == date(2025, 2, 1)
        assert len(schedule) == 1 + 1 + 12 + 1

    def test_custom_plan_needs_terms(self, system, unit, client):
        with pytest.raises(ValidationError):
            system.case_manager.create_case(unit.id, client.id, "800000", plan_name="Custom")

    def test_unknown_plan(self, system, unit, client):
        with pytest.raises(ValidationError):
            system.case_manager.create_case(unit.id, client.id, "800000", plan_name="20/80")

    def test_broker_commission(self, system, unit, client):
        broker = system.broker_manager.create_broker("Marta Ruiz", default_commission_pct="5")
        case = system.case_manager.create_case(unit.id, client.id, "1000000", broker_id=broker.id)
        assert case.broker_commission_pct == Decimal('5')
        assert case.broker_commission == mxn("50000")

    def test_unit_must_be_available(self, system, unit, client):
        system.case_manager.create_case(unit.id, client.id, "1000000")
        with pytest.raises(ValidationError):
            system.case_manager.create_case(unit.id, client.id, "1000000")
        assert len(system.case_manager.list_cases()) == 1

    def test_missing_client_rolls_everything_back(self, system, unit):
        with pytest.raises(NotFoundError):
            system.case_manager.create_case(unit.id, "nobody", "1000000")
        assert system.case_manager.list_cases() == []
        assert system.unit_manager.require_unit(unit.id).status == UnitStatus.AVAILABLE

    def test_reservation_larger_than_down_payment(self, system, unit, client):
        with pytest.raises(ValidationError):
            system.case_manager.create_case(unit.id, client.id, "100000")

    @pytest.mark.parametrize("price", ["0", "-5"])
    def test_rejects_non_positive_price(self, system, unit, client, price):
        with pytest.raises(ValidationError):
            system.case_manager.create_case(unit.id, client.id, price)

    def test_deferred_schedule_generation(self, system, unit, client):
        case = system.case_manager.create_case(unit.id, client.id, "1000000", generate_schedule=False)
        assert system.schedule_manager.get_schedule(case.id) == []

        schedule = system.case_manager.generate_case_schedule(case.id, start_date="2025-03-01")
        assert len(schedule) == 39
        assert schedule[0].due_date == date(2025, 3, 1)

        with pytest.raises(ValidationError):
            system.case_manager.generate_case_schedule(case.id)


class TestCaseLifecycle:

    def test_full_lifecycle(self, system, unit, client):
        case = system.case_manager.create_case(unit.id, client.id, "1000000")
        manager = system.case_manager

        manager.update_status(case.id, CaseStatus.ACTIVE)
        drafted = manager.update_status(case.id, "contract_generated")
        assert drafted.contract_drafted_at is not None
        executed = manager.update_status(case.id, CaseStatus.EXECUTED, notes="signed at notary")

        assert executed.executed_at is not None
        assert executed.notes == "signed at notary"
        assert system.unit_manager.require_unit(unit.id).status == UnitStatus.SOLD

        with pytest.raises(ValidationError):
            manager.update_status(case.id, CaseStatus.CANCELLED)

    def test_cancel_releases_unit(self, system, unit, client):
        case = system.case_manager.create_case(unit.id, client.id, "1000000")
        cancelled = system.case_manager.update_status(case.id, CaseStatus.CANCELLED)

        assert cancelled.cancelled_at is not None
        assert cancelled.is_closed
        assert system.unit_manager.require_unit(unit.id).status == UnitStatus.AVAILABLE

        with pytest.raises(ValidationError):
            system.case_manager.generate_case_schedule(case.id)

    def test_invalid_transition(self, system, unit, client):
        case = system.case_manager.create_case(unit.id, client.id, "1000000")
        with pytest.raises(ValidationError):
            system.case_manager.update_status(case.id, CaseStatus.EXECUTED)
        with pytest.raises(ValidationError):
            system.case_manager.update_status(case.id, "signed")

    def test_attach_document(self, system, unit, client):
        case = system.case_manager.create_case(unit.id, client.id, "1000000")
        updated = system.case_manager.attach_document(case.id, "contract_pdf", " https://docs/c.pdf ")

        assert updated.documents == {"contract_pdf": "https://docs/c.pdf"}
        assert system.case_manager.require_case(case.id).documents["contract_pdf"] == "https://docs/c.pdf"

        with pytest.raises(ValidationError):
            system.case_manager.attach_document(case.id, "selfie", "https://x")
        with pytest.raises(ValidationError):
            system.case_manager.attach_document(case.id, "folder", "   ")

    def test_list_and_stats(self, system, client):
        other = system.client_manager.create_client("Zoe Park", secondary_name="Kai Park")
        u1 = system.unit_manager.create_unit("C4", "1")
        u2 = system.unit_manager.create_unit("C5", "1")
        a = system.case_manager.create_case(u1.id, client.id, "1000000")
        b = system.case_manager.create_case(u2.id, other.id, "2000000")
        system.case_manager.update_status(b.id, CaseStatus.CANCELLED)

        manager = system.case_manager
        assert [c.id for c in manager.list_cases(status=CaseStatus.PENDING)] == [a.id]
        assert [c.id for c in manager.list_cases(block="c5")] == [b.id]
        assert [c.id for c in manager.list_cases(search="kai")] == [b.id]
        assert [c.id for c in manager.list_cases(search="0001")] == [a.id]

        stats = manager.case_stats()
        assert stats["total"] == 2
        assert stats["by_status"]["cancelled"] == 1
        assert stats["open_sale_value"] == "1000000.00"

    def test_client_with_case_cannot_be_deleted(self, system, unit, client):
        system.case_manager.create_case(unit.id, client.id, "1000000")
        with pytest.raises(ValidationError):
            system.client_manager.delete_client(client.id)


class TestBaseCurrency:
    """Every money field follows the configured base currency"""

    @pytest.fixture
    def usd_system(self):
        config = SalesCMSConfig(storage_backend="memory", base_currency="USD")
        return CaseManagementSystem(config, storage=InMemoryStorage(), clock=FixedClock("2025-01-15"))

    @pytest.fixture
    def usd_parties(self, usd_system):
        unit = usd_system.unit_manager.create_unit("C4", "23", list_price="1250000")
        buyer = usd_system.client_manager.create_client("Ana Torres")
        return unit, buyer

    def test_case_payments_and_reports_in_base_currency(self, usd_system, usd_parties):
        unit, buyer = usd_parties
        case, _ = usd_system.open_case(unit_id=unit.id, client_id=buyer.id, sale_price="1000000")

        assert unit.list_price.currency == Currency.USD
        assert case.sale_price.currency == Currency.USD
        assert case.discount_pct == Decimal("20.00")
        schedule = usd_system.schedule_manager.get_schedule(case.id)
        assert {i.amount_due.currency for i in schedule} == {Currency.USD}

        usd_system.payment_recorder.record_payment(case.id, "50000", "2025-01-15", "reserva",
                                                   installment_id=schedule[0].id)
        reservation = usd_system.schedule_manager.require_installment(schedule[0].id)
        assert reservation.status == InstallmentStatus.PAID

        summary = usd_system.summarizer.summarize_case(case.id, date(2025, 1, 20))
        assert summary.total_paid == Money(Decimal("50000"), Currency.USD)
        assert summary.balance.amount == Decimal("950000.12")

        report = usd_system.reporter.finance_report(today=date(2025, 1, 20))
        assert report.metadata["currency"] == "USD"
        assert report.totals["collected"] == "50000.00"
        assert usd_system.reporter.dashboard_stats(date(2025, 1, 20))["total_collected"] == "50000.00"
        assert usd_system.case_manager.case_stats()["open_sale_value"] == "1000000.00"

    def test_case_without_schedule_summarizes_in_base_currency(self, usd_system, usd_parties):
        unit, buyer = usd_parties
        case = usd_system.case_manager.create_case(unit.id, buyer.id, "1000000",
                                                   generate_schedule=False)

        summary = usd_system.summarizer.summarize_case(case.id)
        assert summary.balance == Money.zero(Currency.USD)
        assert usd_system.reporter.finance_report().totals["sale_value"] == "1000000.00"

    def test_sale_price_in_other_currency_rejected(self, usd_system, usd_parties):
        unit, buyer = usd_parties
        with pytest.raises(ValidationError):
            usd_system.case_manager.create_case(unit.id, buyer.id, mxn("1000000"))
        assert usd_system.unit_manager.require_unit(unit.id).status == UnitStatus.AVAILABLE

    def test_list_price_in_other_currency_rejected(self, usd_system):
        with pytest.raises(ValidationError):
            usd_system.unit_manager.create_unit("C4", "24", list_price=mxn("1250000"))
