"""
Payment Schedule Module

Derives a dated installment schedule from a sale price and a payment plan
(reservation, down payment, N monthly payments, final payment), and persists
installments with an optimistic version for concurrent payment allocation.

generate_schedule() and derive_plan_amounts() are pure: they never touch
storage or the clock.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Union
from enum import Enum
import logging

from .currency import Money, Currency, Numeric, to_decimal, percentage_of, CENTAVO, HUNDRED
from .dates import DateLike, parse_date, add_days, add_months
from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError, NotFoundError, ConcurrencyConflict


logger = logging.getLogger("sales_cms.schedule")


class PaymentCategory(Enum):
    """Closed set of payment / installment categories"""
    RESERVA = "reserva"            # initial hold
    ENGANCHE = "enganche"          # down payment
    MENSUALIDAD = "mensualidad"    # monthly installment
    ENTREGA = "entrega"            # final payment on delivery
    BALLOON = "balloon"
    ADJUSTMENT = "adjustment"
    REFUND = "refund"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


CATEGORY_LABELS = {
    PaymentCategory.RESERVA: "Reserva",
    PaymentCategory.ENGANCHE: "Enganche",
    PaymentCategory.MENSUALIDAD: "Mensualidad",
    PaymentCategory.ENTREGA: "Entrega",
    PaymentCategory.BALLOON: "Pago Global",
    PaymentCategory.ADJUSTMENT: "Ajuste",
    PaymentCategory.REFUND: "Reembolso",
}


class InstallmentStatus(Enum):
    """Installment status; OVERDUE is only written by an explicit refresh"""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    WAIVED = "waived"


OPEN_STATUSES = (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL, InstallmentStatus.OVERDUE)


@dataclass
class Installment:
    """One scheduled expected payment belonging to a case"""
    case_id: str
    sequence_index: int
    category: PaymentCategory
    label: str
    amount_due: Money
    due_date: date
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_amount: Money = field(default_factory=Money.zero)
    paid_date: Optional[date] = None
    version: int = 0
    notes: Optional[str] = None

    def __post_init__(self):
        if self.sequence_index < 0:
            raise ValidationError("Sequence index must be non-negative",
                                  "installment", self.id, "validate")
        if self.amount_due.currency != self.paid_amount.currency:
            raise ValidationError("Amount due and paid amount must share a currency",
                                  "installment", self.id, "validate")

    @property
    def id(self) -> str:
        # (case, sequence index) is unique because it is the record key
        return f"{self.case_id}_{self.sequence_index}"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


@dataclass(frozen=True)
class ScheduledAmount:
    """A single dated amount (reservation, down payment or final payment)"""
    amount: Money
    due_date: DateLike
    label: Optional[str] = None


@dataclass(frozen=True)
class MonthlyPlan:
    """count equal monthly payments, the i-th due start_date + i months"""
    amount: Money
    count: int
    start_date: DateLike


@dataclass(frozen=True)
class PlanSpec:
    reservation: Optional[ScheduledAmount] = None
    down_payment: Optional[ScheduledAmount] = None
    monthly: Optional[MonthlyPlan] = None
    final: Optional[ScheduledAmount] = None


@dataclass(frozen=True)
class PlanPreset:
    name: str
    down_pct: Decimal
    monthly_count: int
    final_pct: Decimal


PLAN_PRESETS: Dict[str, PlanPreset] = {
    "30/60/10": PlanPreset("30/60/10", Decimal('30'), 36, Decimal('10')),
    "40/50/10": PlanPreset("40/50/10", Decimal('40'), 30, Decimal('10')),
    "50/40/10": PlanPreset("50/40/10", Decimal('50'), 24, Decimal('10')),
    "90/10": PlanPreset("90/10", Decimal('90'), 0, Decimal('10')),
}


@dataclass(frozen=True)
class PlanAmounts:
    """
    Amounts derived from percentages of the sale price

    residual is monthly_total - monthly_amount * monthly_count: the rounding
    remainder, which is not redistributed onto any installment.
    """
    sale_price: Money
    down_pct: Decimal
    final_pct: Decimal
    down_payment: Money
    final_payment: Money
    monthly_total: Money
    monthly_amount: Money
    monthly_count: int
    residual: Money


def _as_money(value: Union[Money, Numeric], currency: Currency = Currency.MXN) -> Money:
    if isinstance(value, Money):
        return value
    return Money(to_decimal(value), currency)


def _require_positive_price(sale_price: Union[Money, Numeric]) -> Money:
    price = _as_money(sale_price)
    if not price.is_positive():
        raise ValidationError(f"Sale price must be positive, got {price.amount}",
                              "case", None, "generate_schedule")
    return price


def _require_positive(amount: Money, what: str) -> None:
    if not amount.is_positive():
        raise ValidationError(f"{what} amount must be positive, got {amount.amount}",
                              "installment", None, "generate_schedule")


def derive_plan_amounts(
    sale_price: Union[Money, Numeric],
    down_pct: Numeric,
    monthly_count: int,
    final_pct: Numeric = Decimal('10')
) -> PlanAmounts:
    """
    Split a sale price into down payment, monthly payments and final payment

    Every amount is rounded half-up to centavos where it is computed.

    Raises:
        ValidationError: Non-positive price, percentages outside 0-100 or
            summing above 100, negative count, or a monthly portion with no
            monthly payments to carry it
    """
    price = _require_positive_price(sale_price)
    down_pct = to_decimal(down_pct)
    final_pct = to_decimal(final_pct)

    for name, pct in (("Down payment", down_pct), ("Final payment", final_pct)):
        if pct < 0 or pct > HUNDRED:
            raise ValidationError(f"{name} percentage must be between 0 and 100, got {pct}",
                                  "case", None, "derive_plan")
    if down_pct + final_pct > HUNDRED:
        raise ValidationError("Down and final percentages exceed 100%", "case", None, "derive_plan")
    if monthly_count < 0:
        raise ValidationError(f"Monthly count must be non-negative, got {monthly_count}",
                              "case", None, "derive_plan")

    down_payment = percentage_of(price, down_pct)
    final_payment = percentage_of(price, final_pct)
    monthly_total = price - down_payment - final_payment

    if monthly_count == 0:
        # a centavo of rounding between two percentages is residual, not a missing plan
        if abs(monthly_total.amount) > CENTAVO:
            raise ValidationError(
                f"{monthly_total.to_string()} is left for monthly payments but the plan has none",
                "case", None, "derive_plan"
            )
        monthly_amount = Money.zero(price.currency)
    else:
        if not monthly_total.is_positive():
            raise ValidationError("Plan has monthly payments but nothing left to pay monthly",
                                  "case", None, "derive_plan")
        monthly_amount = monthly_total / Decimal(monthly_count)

    residual = monthly_total - monthly_amount * Decimal(monthly_count)

    return PlanAmounts(
        sale_price=price,
        down_pct=down_pct,
        final_pct=final_pct,
        down_payment=down_payment,
        final_payment=final_payment,
        monthly_total=monthly_total,
        monthly_amount=monthly_amount,
        monthly_count=monthly_count,
        residual=residual
    )


def build_plan_spec(
    amounts: PlanAmounts,
    start_date: DateLike,
    reservation_amount: Union[Money, Numeric] = Decimal('50000'),
    down_payment_offset_days: int = 30,
    monthly_start_offset_months: int = 2,
    final_payment_offset_months: int = 3
) -> PlanSpec:
    """
    Lay derived plan amounts onto due dates

    The reservation is due on the start date and counts toward the down
    payment; the remainder (enganche) is due down_payment_offset_days later.
    Monthly payments start monthly_start_offset_months after the start date and
    the final payment falls monthly_count + final_payment_offset_months months
    after it.
    """
    start = parse_date(start_date, "start_date")
    reservation = _as_money(reservation_amount, amounts.sale_price.currency)

    if reservation.is_negative():
        raise ValidationError("Reservation amount cannot be negative", "case", None, "build_plan")
    if reservation > amounts.down_payment:
        raise ValidationError(
            f"Reservation {reservation.to_string()} exceeds the down payment "
            f"{amounts.down_payment.to_string()}",
            "case", None, "build_plan"
        )

    enganche = amounts.down_payment - reservation

    return PlanSpec(
        reservation=ScheduledAmount(reservation, start) if reservation.is_positive() else None,
        down_payment=(
            ScheduledAmount(enganche, add_days(start, down_payment_offset_days))
            if enganche.is_positive() else None
        ),
        monthly=(
            MonthlyPlan(amounts.monthly_amount, amounts.monthly_count,
                        add_months(start, monthly_start_offset_months))
            if amounts.monthly_count > 0 else None
        ),
        final=(
            ScheduledAmount(
                amounts.final_payment,
                add_months(start, amounts.monthly_count + final_payment_offset_months),
                label=f"Entrega ({amounts.final_pct.normalize():f}%)"
            )
            if amounts.final_payment.is_positive() else None
        )
    )


def generate_schedule(
    sale_price: Union[Money, Numeric],
    plan: PlanSpec,
    case_id: str = ""
) -> List[Installment]:
    """
    Produce the ordered installment sequence for a plan

    Order is reservation, down payment, monthly (x count), final, with
    contiguous zero-based sequence indices. Every installment starts pending
    with nothing paid.

    Args:
        sale_price: Positive sale price
        plan: Plan specification; any part may be omitted
        case_id: Owning case, used to key the installments

    Returns:
        List of Installment objects

    Raises:
        ValidationError: Non-positive sale price or amount, negative monthly
            count, or an unparseable date
    """
    price = _require_positive_price(sale_price)
    installments: List[Installment] = []

    def emit(category: PaymentCategory, label: str, amount: Money, due: DateLike) -> None:
        installments.append(Installment(
            case_id=case_id,
            sequence_index=len(installments),
            category=category,
            label=label,
            amount_due=amount,
            due_date=parse_date(due, "due_date"),
            paid_amount=Money.zero(price.currency)
        ))

    if plan.reservation is not None:
        _require_positive(plan.reservation.amount, "Reservation")
        emit(PaymentCategory.RESERVA, plan.reservation.label or PaymentCategory.RESERVA.label,
             plan.reservation.amount, plan.reservation.due_date)

    if plan.down_payment is not None:
        _require_positive(plan.down_payment.amount, "Down payment")
        emit(PaymentCategory.ENGANCHE, plan.down_payment.label or PaymentCategory.ENGANCHE.label,
             plan.down_payment.amount, plan.down_payment.due_date)

    if plan.monthly is not None:
        count = plan.monthly.count
        if count < 0:
            raise ValidationError(f"Monthly count must be non-negative, got {count}",
                                  "installment", None, "generate_schedule")
        if count > 0:
            _require_positive(plan.monthly.amount, "Monthly")
            start = parse_date(plan.monthly.start_date, "monthly start_date")
            for i in range(count):
                emit(PaymentCategory.MENSUALIDAD, f"{PaymentCategory.MENSUALIDAD.label} {i + 1}",
                     plan.monthly.amount, add_months(start, i))

    if plan.final is not None:
        _require_positive(plan.final.amount, "Final payment")
        emit(PaymentCategory.ENTREGA, plan.final.label or PaymentCategory.ENTREGA.label,
             plan.final.amount, plan.final.due_date)

    return installments


def installment_to_dict(installment: Installment) -> Dict:
    """Convert Installment to dictionary for storage"""
    return {
        'id': installment.id,
        'case_id': installment.case_id,
        'sequence_index': installment.sequence_index,
        'category': installment.category.value,
        'label': installment.label,
        'amount_due': str(installment.amount_due.amount),
        'paid_amount': str(installment.paid_amount.amount),
        'currency': installment.amount_due.currency.code,
        'due_date': installment.due_date.isoformat(),
        'status': installment.status.value,
        'paid_date': installment.paid_date.isoformat() if installment.paid_date else None,
        'version': installment.version,
        'notes': installment.notes,
    }


def installment_from_dict(data: Dict) -> Installment:
    """Convert dictionary to Installment"""
    currency = Currency[data.get('currency', 'MXN')]
    return Installment(
        case_id=data['case_id'],
        sequence_index=data['sequence_index'],
        category=PaymentCategory(data['category']),
        label=data['label'],
        amount_due=Money(Decimal(data['amount_due']), currency),
        due_date=date.fromisoformat(data['due_date']),
        status=InstallmentStatus(data['status']),
        paid_amount=Money(Decimal(data['paid_amount']), currency),
        paid_date=date.fromisoformat(data['paid_date']) if data.get('paid_date') else None,
        version=data.get('version', 0),
        notes=data.get('notes')
    )


class ScheduleManager:
    """
    Persists and maintains case payment schedules
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 case_table: str = "cases", base_currency: Currency = Currency.MXN):
        self.storage = storage
        self.audit_trail = audit_trail
        self.base_currency = base_currency
        self.table_name = "payment_schedule"
        self.case_table = case_table

    def generate_for_case(
        self,
        case_id: str,
        sale_price: Union[Money, Numeric],
        plan: PlanSpec,
        user_id: Optional[str] = None
    ) -> List[Installment]:
        """
        Generate and persist the schedule of a case

        Raises:
            NotFoundError: If the case does not exist
            ValidationError: If the plan is invalid or the case already has a schedule
        """
        sale_price = _as_money(sale_price, self.base_currency)
        schedule = generate_schedule(sale_price, plan, case_id=case_id)

        with self.storage.atomic():
            if not self.storage.exists(self.case_table, case_id):
                raise NotFoundError(f"Case {case_id} not found", "case", case_id, "generate_schedule")
            if self.storage.find(self.table_name, {"case_id": case_id}):
                raise ValidationError(f"Case {case_id} already has a payment schedule",
                                      "case", case_id, "generate_schedule")
            for installment in schedule:
                self.storage.save(self.table_name, installment.id, installment_to_dict(installment))

            total = sum((i.amount_due for i in schedule), Money.zero(sale_price.currency))
            self.audit_trail.log_event(
                event_type=AuditEventType.SCHEDULE_GENERATED,
                entity_type="case",
                entity_id=case_id,
                metadata={"installments": len(schedule), "total_scheduled": str(total.amount)},
                user_id=user_id
            )

        logger.info("Schedule generated", extra={"extra": {
            "case_id": case_id, "installments": len(schedule), "total_scheduled": str(total.amount)
        }})
        return schedule

    def get_schedule(self, case_id: str) -> List[Installment]:
        """Get a case's installments in sequence order"""
        rows = self.storage.find(self.table_name, {"case_id": case_id})
        schedule = [installment_from_dict(row) for row in rows]
        schedule.sort(key=lambda x: x.sequence_index)
        return schedule

    def get_all_installments(self) -> List[Installment]:
        return [installment_from_dict(row) for row in self.storage.load_all(self.table_name)]

    def get_installment(self, installment_id: str) -> Optional[Installment]:
        data = self.storage.load(self.table_name, installment_id)
        if data:
            return installment_from_dict(data)
        return None

    def require_installment(self, installment_id: str) -> Installment:
        installment = self.get_installment(installment_id)
        if not installment:
            raise NotFoundError(f"Installment {installment_id} not found",
                                "installment", installment_id, "get")
        return installment

    def save_installment(self, installment: Installment, expected_version: int) -> Installment:
        """
        Versioned write of an installment

        Returns:
            The installment as stored, with its version incremented

        Raises:
            ConcurrencyConflict: If another writer saved the installment since
                expected_version was read
        """
        stored = replace(installment, version=expected_version + 1)
        if not self.storage.save_versioned(self.table_name, installment.id,
                                           installment_to_dict(stored), expected_version):
            raise ConcurrencyConflict(
                f"Installment {installment.id} changed since version {expected_version}",
                "installment", installment.id, "save"
            )
        return stored

    def waive_installment(self, installment_id: str, reason: Optional[str] = None,
                          user_id: Optional[str] = None) -> Installment:
        """
        Waive an installment (external-only transition)

        Raises:
            ValidationError: If the installment is already paid or waived
        """
        with self.storage.atomic():
            installment = self.require_installment(installment_id)
            if installment.status in (InstallmentStatus.PAID, InstallmentStatus.WAIVED):
                raise ValidationError(
                    f"Installment {installment_id} is {installment.status.value} and cannot be waived",
                    "installment", installment_id, "waive"
                )
            old_status = installment.status
            waived = replace(installment, status=InstallmentStatus.WAIVED,
                             notes=reason or installment.notes)
            waived = self.save_installment(waived, installment.version)
            self.audit_trail.log_event(
                event_type=AuditEventType.INSTALLMENT_WAIVED,
                entity_type="installment",
                entity_id=installment_id,
                metadata={"old_status": old_status.value, "reason": reason,
                          "outstanding": str((installment.amount_due - installment.paid_amount).amount)},
                user_id=user_id
            )
        return waived

    def refresh_overdue_statuses(self, today: date, case_id: Optional[str] = None) -> List[Installment]:
        """
        Persist the overdue label on pending/partial installments past due

        This is the only place OVERDUE is written. Payment recording and
        aggregation never call it.

        Returns:
            Installments whose status changed
        """
        updated = []
        with self.storage.atomic():
            installments = self.get_schedule(case_id) if case_id else self.get_all_installments()
            for installment in installments:
                if installment.status not in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL):
                    continue
                if installment.due_date >= today:
                    continue
                marked = replace(installment, status=InstallmentStatus.OVERDUE)
                updated.append(self.save_installment(marked, installment.version))

        if updated:
            logger.info("Installments marked overdue", extra={"extra": {
                "count": len(updated), "as_of": today.isoformat()
            }})
            self.audit_trail.log_event(
                event_type=AuditEventType.INSTALLMENTS_MARKED_OVERDUE,
                entity_type="installment",
                entity_id=case_id or "*",
                metadata={"as_of": today.isoformat(),
                          "installment_ids": [i.id for i in updated]}
            )
        return updated
