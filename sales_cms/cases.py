"""
Sale Case Module

A case is one property sale: unit, buyer, price, payment plan, lifecycle
status, documents and timeline. Creating a case reserves its unit and,
by default, generates its payment schedule in the same atomic unit.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union
from enum import Enum
import logging
import uuid

from .currency import Money, Currency, Numeric, to_decimal, percentage_of, round_money, HUNDRED
from .dates import Clock, SystemClock, DateLike, parse_date
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .logging_config import log_action
from .errors import ValidationError, NotFoundError
from .inventory import UnitManager, UnitStatus
from .clients import ClientManager, BrokerManager
from .schedule import PLAN_PRESETS, ScheduleManager, derive_plan_amounts, build_plan_spec


logger = logging.getLogger("sales_cms.cases")


class CaseStatus(Enum):
    """Case lifecycle states"""
    PENDING = "pending"                          # awaiting approval
    ACTIVE = "active"                            # approved, collecting payments
    CONTRACT_GENERATED = "contract_generated"
    EXECUTED = "executed"                        # contract signed, unit sold
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"


ALLOWED_CASE_TRANSITIONS = {
    CaseStatus.PENDING: {CaseStatus.ACTIVE, CaseStatus.CANCELLED, CaseStatus.ON_HOLD},
    CaseStatus.ACTIVE: {CaseStatus.CONTRACT_GENERATED, CaseStatus.CANCELLED, CaseStatus.ON_HOLD},
    CaseStatus.CONTRACT_GENERATED: {CaseStatus.EXECUTED, CaseStatus.CANCELLED, CaseStatus.ON_HOLD},
    CaseStatus.ON_HOLD: {CaseStatus.PENDING, CaseStatus.ACTIVE, CaseStatus.CONTRACT_GENERATED,
                         CaseStatus.CANCELLED},
    CaseStatus.EXECUTED: set(),
    CaseStatus.CANCELLED: set(),
}

DOCUMENT_KINDS = ("offer_doc", "offer_pdf", "contract_doc", "contract_pdf", "folder")

CUSTOM_PLAN = "Custom"


def format_case_number(prefix: str, sequence: int, width: int = 4) -> str:
    """format_case_number("MANA88-AK-", 7) -> "MANA88-AK-0007" """
    return f"{prefix}{sequence:0{width}d}"


class CaseIdAllocator(ABC):
    """Supplies the next human-readable case number"""

    @abstractmethod
    def next_case_number(self) -> str:
        pass


class SequentialCaseIdAllocator(CaseIdAllocator):
    """
    Next number = highest existing suffix + 1

    Call inside storage.atomic() so two creators cannot read the same maximum.
    """

    def __init__(self, storage: StorageInterface, prefix: str = "MANA88-AK-", width: int = 4,
                 table_name: str = "cases"):
        self.storage = storage
        self.prefix = prefix
        self.width = width
        self.table_name = table_name

    def next_case_number(self) -> str:
        highest = 0
        for row in self.storage.load_all(self.table_name):
            number = row.get('case_number', '')
            if not number.startswith(self.prefix):
                continue
            suffix = number[len(self.prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return format_case_number(self.prefix, highest + 1, self.width)


@dataclass
class SaleCase(StorageRecord):
    """A property sale record"""
    case_number: str
    unit_id: str
    client_id: str
    sale_price: Money
    plan_name: str
    reservation_amount: Money
    down_payment_pct: Decimal
    down_payment: Money
    monthly_count: int
    monthly_amount: Money
    final_payment_pct: Decimal
    final_payment: Money
    block: str = ""
    lot: str = ""
    broker_id: Optional[str] = None
    list_price: Optional[Money] = None
    discount_pct: Optional[Decimal] = None
    broker_commission_pct: Optional[Decimal] = None
    broker_commission: Optional[Money] = None
    status: CaseStatus = CaseStatus.PENDING
    documents: Dict[str, str] = field(default_factory=dict)
    offer_date: Optional[date] = None
    contract_drafted_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    delivery_date: Optional[date] = None
    assigned_staff_id: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        if not self.sale_price.is_positive():
            raise ValidationError(f"Sale price must be positive, got {self.sale_price.amount}",
                                  "case", self.id, "validate")

    @property
    def unit_label(self) -> str:
        return f"{self.block}-{self.lot}"

    @property
    def is_closed(self) -> bool:
        return not ALLOWED_CASE_TRANSITIONS[self.status]


_MONEY_FIELDS = ("sale_price", "reservation_amount", "down_payment", "monthly_amount",
                 "final_payment", "list_price", "broker_commission")
_DECIMAL_FIELDS = ("down_payment_pct", "final_payment_pct", "discount_pct", "broker_commission_pct")
_DATE_FIELDS = ("offer_date", "delivery_date")
_DATETIME_FIELDS = ("contract_drafted_at", "executed_at", "cancelled_at")


class CaseManager:
    """
    Manages case intake and lifecycle
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        unit_manager: UnitManager,
        client_manager: ClientManager,
        broker_manager: BrokerManager,
        schedule_manager: ScheduleManager,
        case_id_allocator: Optional[CaseIdAllocator] = None,
        clock: Optional[Clock] = None,
        default_reservation_amount: Numeric = Decimal('50000.00'),
        default_final_payment_pct: Numeric = Decimal('10'),
        down_payment_offset_days: int = 30,
        monthly_start_offset_months: int = 2,
        final_payment_offset_months: int = 3,
        base_currency: Currency = Currency.MXN
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.unit_manager = unit_manager
        self.client_manager = client_manager
        self.broker_manager = broker_manager
        self.schedule_manager = schedule_manager
        self.case_id_allocator = case_id_allocator or SequentialCaseIdAllocator(storage)
        self.clock = clock or SystemClock()
        self.default_reservation_amount = to_decimal(default_reservation_amount)
        self.default_final_payment_pct = to_decimal(default_final_payment_pct)
        self.down_payment_offset_days = down_payment_offset_days
        self.monthly_start_offset_months = monthly_start_offset_months
        self.final_payment_offset_months = final_payment_offset_months
        self.base_currency = base_currency
        self.table_name = "cases"

    def create_case(
        self,
        unit_id: str,
        client_id: str,
        sale_price: Union[Money, Numeric],
        plan_name: str = "30/60/10",
        down_payment_pct: Optional[Numeric] = None,
        monthly_count: Optional[int] = None,
        final_payment_pct: Optional[Numeric] = None,
        broker_id: Optional[str] = None,
        broker_commission_pct: Optional[Numeric] = None,
        reservation_amount: Optional[Numeric] = None,
        offer_date: Optional[DateLike] = None,
        schedule_start: Optional[DateLike] = None,
        generate_schedule: bool = True,
        notes: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> SaleCase:
        """
        Open a sale case against an available unit

        Plan amounts come from a named preset, with any explicit percentage or
        count overriding it. A plan named "Custom" needs down_payment_pct and
        monthly_count.

        Args:
            unit_id: Unit being sold (must be available)
            client_id: Buyer
            sale_price: Agreed price, must be positive
            plan_name: PLAN_PRESETS key or "Custom"
            broker_commission_pct: Defaults to the broker's default commission
            reservation_amount: Defaults to the configured reservation
            offer_date: Defaults to today
            schedule_start: First due date of the schedule, defaults to offer_date
            generate_schedule: Persist the payment schedule with the case

        Returns:
            Created SaleCase in pending status

        Raises:
            ValidationError: Bad price or plan, or unit not available
            NotFoundError: Unit, client or broker missing
        """
        price = sale_price
        if not isinstance(price, Money):
            price = Money(to_decimal(price), self.base_currency)
        if price.currency != self.base_currency:
            raise ValidationError(
                f"Sale price must be in {self.base_currency.code}, got {price.currency.code}",
                "case", None, "create"
            )
        if not price.is_positive():
            raise ValidationError(f"Sale price must be positive, got {price.amount}",
                                  "case", None, "create")

        down_pct, count, final_pct = self._resolve_plan(plan_name, down_payment_pct,
                                                        monthly_count, final_payment_pct)
        amounts = derive_plan_amounts(price, down_pct, count, final_pct)

        offered_on = parse_date(offer_date, "offer_date") if offer_date else self.clock.today()
        start = parse_date(schedule_start, "schedule_start") if schedule_start else offered_on
        reservation = Money(to_decimal(reservation_amount) if reservation_amount is not None
                            else self.default_reservation_amount, price.currency)
        plan = build_plan_spec(
            amounts, start, reservation,
            down_payment_offset_days=self.down_payment_offset_days,
            monthly_start_offset_months=self.monthly_start_offset_months,
            final_payment_offset_months=self.final_payment_offset_months
        )

        with self.storage.atomic():
            unit = self.unit_manager.require_unit(unit_id)
            if unit.status != UnitStatus.AVAILABLE:
                raise ValidationError(f"Unit {unit.label} is {unit.status.value}, not available",
                                      "unit", unit_id, "create_case")
            self.client_manager.require_client(client_id)

            commission_pct = None
            commission = None
            if broker_id:
                broker = self.broker_manager.require_broker(broker_id)
                commission_pct = (to_decimal(broker_commission_pct) if broker_commission_pct is not None
                                  else broker.default_commission_pct)
                if commission_pct < 0 or commission_pct > HUNDRED:
                    raise ValidationError("Broker commission must be between 0 and 100",
                                          "case", None, "create")
                commission = percentage_of(price, commission_pct)

            discount_pct = None
            if unit.list_price is not None:
                discount_pct = round_money(
                    (unit.list_price.amount - price.amount) / unit.list_price.amount * HUNDRED
                )

            now = datetime.now(timezone.utc)
            case = SaleCase(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                case_number=self.case_id_allocator.next_case_number(),
                unit_id=unit.id,
                client_id=client_id,
                sale_price=price,
                plan_name=plan_name,
                reservation_amount=reservation,
                down_payment_pct=amounts.down_pct,
                down_payment=amounts.down_payment,
                monthly_count=amounts.monthly_count,
                monthly_amount=amounts.monthly_amount,
                final_payment_pct=amounts.final_pct,
                final_payment=amounts.final_payment,
                block=unit.block,
                lot=unit.lot,
                broker_id=broker_id,
                list_price=unit.list_price,
                discount_pct=discount_pct,
                broker_commission_pct=commission_pct,
                broker_commission=commission,
                offer_date=offered_on,
                notes=notes
            )
            if self.get_case_by_number(case.case_number):
                raise ValidationError(f"Case number {case.case_number} already exists",
                                      "case", case.case_number, "create")

            self._save_case(case)
            self.unit_manager.reserve_unit(unit.id, case.id)
            if generate_schedule:
                self.schedule_manager.generate_for_case(case.id, price, plan, user_id=user_id)

            self.audit_trail.log_event(
                event_type=AuditEventType.CASE_CREATED,
                entity_type="case",
                entity_id=case.id,
                metadata={
                    "case_number": case.case_number,
                    "unit": unit.label,
                    "client_id": client_id,
                    "sale_price": str(price.amount),
                    "plan_name": plan_name,
                    "rounding_residual": str(amounts.residual.amount)
                },
                user_id=user_id
            )

        logger.info("Case created", extra={"extra": {
            "case_id": case.id, "case_number": case.case_number, "unit": case.unit_label
        }})
        return case

    def generate_case_schedule(self, case_id: str, start_date: Optional[DateLike] = None,
                               user_id: Optional[str] = None):
        """
        Generate the schedule of a case created without one, from its stored plan

        Raises:
            ValidationError: If the case is closed or already has a schedule
        """
        case = self.require_case(case_id)
        if case.is_closed:
            raise ValidationError(f"Case {case.case_number} is {case.status.value}",
                                  "case", case_id, "generate_schedule")

        amounts = derive_plan_amounts(case.sale_price, case.down_payment_pct,
                                      case.monthly_count, case.final_payment_pct)
        start = parse_date(start_date, "start_date") if start_date else (case.offer_date or self.clock.today())
        plan = build_plan_spec(
            amounts, start, case.reservation_amount,
            down_payment_offset_days=self.down_payment_offset_days,
            monthly_start_offset_months=self.monthly_start_offset_months,
            final_payment_offset_months=self.final_payment_offset_months
        )
        return self.schedule_manager.generate_for_case(case.id, case.sale_price, plan, user_id=user_id)

    def _resolve_plan(self, plan_name, down_pct, monthly_count, final_pct):
        preset = PLAN_PRESETS.get(plan_name)
        if preset is None and plan_name != CUSTOM_PLAN:
            raise ValidationError(
                f"Unknown plan '{plan_name}' (expected one of: {', '.join(PLAN_PRESETS)}, {CUSTOM_PLAN})",
                "case", None, "create"
            )
        if preset is None and (down_pct is None or monthly_count is None):
            raise ValidationError("Custom plans need down_payment_pct and monthly_count",
                                  "case", None, "create")

        resolved_down = to_decimal(down_pct) if down_pct is not None else preset.down_pct
        resolved_count = monthly_count if monthly_count is not None else preset.monthly_count
        if final_pct is not None:
            resolved_final = to_decimal(final_pct)
        elif preset is not None:
            resolved_final = preset.final_pct
        else:
            resolved_final = self.default_final_payment_pct
        return resolved_down, resolved_count, resolved_final

    def get_case(self, case_id: str) -> Optional[SaleCase]:
        data = self.storage.load(self.table_name, case_id)
        if data:
            return self._case_from_dict(data)
        return None

    def require_case(self, case_id: str) -> SaleCase:
        case = self.get_case(case_id)
        if not case:
            raise NotFoundError(f"Case {case_id} not found", "case", case_id, "get")
        return case

    def get_case_by_number(self, case_number: str) -> Optional[SaleCase]:
        rows = self.storage.find(self.table_name, {"case_number": case_number})
        if rows:
            return self._case_from_dict(rows[0])
        return None

    def list_cases(self, status: Optional[CaseStatus] = None, block: Optional[str] = None,
                   search: Optional[str] = None) -> List[SaleCase]:
        """
        List cases, optionally filtered

        Args:
            status: Only cases in this status
            block: Only cases on units of this block
            search: Substring of the case number, unit label or buyer name
        """
        filters = {}
        if status:
            filters["status"] = status.value
        if block:
            filters["block"] = block.strip().upper()
        cases = [self._case_from_dict(row) for row in self.storage.find(self.table_name, filters)]

        if search:
            term = search.strip().lower()
            names = {}
            for case in cases:
                client = self.client_manager.get_client(case.client_id)
                names[case.id] = client.display_name.lower() if client else ""
            cases = [
                c for c in cases
                if term in c.case_number.lower()
                or term in c.unit_label.lower()
                or term in names[c.id]
            ]

        cases.sort(key=lambda c: c.case_number)
        return cases

    def update_status(self, case_id: str, new_status: Union[CaseStatus, str],
                      notes: Optional[str] = None, user_id: Optional[str] = None) -> SaleCase:
        """
        Move a case through its lifecycle

        executed marks the unit sold; cancelled releases a reserved unit.

        Raises:
            ValidationError: If the transition is not allowed
        """
        if not isinstance(new_status, CaseStatus):
            try:
                new_status = CaseStatus(new_status)
            except ValueError:
                raise ValidationError(f"Invalid case status '{new_status}'", "case", case_id, "update_status")

        with self.storage.atomic():
            case = self.require_case(case_id)
            if new_status not in ALLOWED_CASE_TRANSITIONS[case.status]:
                raise ValidationError(
                    f"Case {case.case_number} cannot move from {case.status.value} to {new_status.value}",
                    "case", case_id, "update_status"
                )

            old_status = case.status
            now = datetime.now(timezone.utc)
            case.status = new_status
            case.updated_at = now
            if notes:
                case.notes = notes

            if new_status == CaseStatus.CONTRACT_GENERATED:
                case.contract_drafted_at = now
            elif new_status == CaseStatus.EXECUTED:
                case.executed_at = now
                self.unit_manager.mark_sold(case.unit_id, case.id)
            elif new_status == CaseStatus.CANCELLED:
                case.cancelled_at = now
                unit = self.unit_manager.get_unit(case.unit_id)
                if unit and unit.status == UnitStatus.RESERVED:
                    self.unit_manager.release_unit(case.unit_id, case.id)

            self._save_case(case)
            self.audit_trail.log_event(
                event_type=AuditEventType.CASE_STATUS_CHANGED,
                entity_type="case",
                entity_id=case.id,
                metadata={"old_status": old_status.value, "new_status": new_status.value,
                          "notes": notes},
                user_id=user_id
            )

        log_action(logger, "info", "Case status changed", user_id=user_id,
                   action=new_status.value, resource=f"case/{case.id}",
                   extra={"case_number": case.case_number, "old_status": old_status.value})
        return case

    def attach_document(self, case_id: str, kind: str, url: str,
                        user_id: Optional[str] = None) -> SaleCase:
        """Record a document reference (offer, contract, folder) on a case"""
        if kind not in DOCUMENT_KINDS:
            raise ValidationError(f"Unknown document kind '{kind}' (expected one of: {', '.join(DOCUMENT_KINDS)})",
                                  "case", case_id, "attach_document")
        if not url or not url.strip():
            raise ValidationError("Document URL is required", "case", case_id, "attach_document")

        with self.storage.atomic():
            case = self.require_case(case_id)
            case.documents[kind] = url.strip()
            case.updated_at = datetime.now(timezone.utc)
            self._save_case(case)
            self.audit_trail.log_event(
                event_type=AuditEventType.CASE_DOCUMENT_ATTACHED,
                entity_type="case",
                entity_id=case_id,
                metadata={"kind": kind, "url": url.strip()},
                user_id=user_id
            )
        return case

    def case_stats(self) -> Dict:
        """Case counts by status and the value of open (non-cancelled) sales"""
        cases = [self._case_from_dict(row) for row in self.storage.load_all(self.table_name)]
        by_status = {status.value: 0 for status in CaseStatus}
        open_value = Money.zero(self.base_currency)
        for case in cases:
            by_status[case.status.value] += 1
            if case.status != CaseStatus.CANCELLED:
                open_value = open_value + case.sale_price
        return {
            "total": len(cases),
            "by_status": by_status,
            "open_sale_value": str(open_value.amount)
        }

    def _save_case(self, case: SaleCase) -> None:
        self.storage.save(self.table_name, case.id, self._case_to_dict(case))

    def _case_to_dict(self, case: SaleCase) -> Dict:
        result = case.to_dict()
        result['status'] = case.status.value
        result['currency'] = case.sale_price.currency.code
        for name in _MONEY_FIELDS:
            value = getattr(case, name)
            result[name] = str(value.amount) if value is not None else None
        for name in _DECIMAL_FIELDS:
            value = getattr(case, name)
            result[name] = str(value) if value is not None else None
        for name in _DATE_FIELDS + _DATETIME_FIELDS:
            value = getattr(case, name)
            result[name] = value.isoformat() if value is not None else None
        return result

    def _case_from_dict(self, data: Dict) -> SaleCase:
        data = dict(data)
        currency = Currency[data.pop('currency', 'MXN')]
        data['status'] = CaseStatus(data['status'])
        for name in _MONEY_FIELDS:
            if data.get(name) is not None:
                data[name] = Money(Decimal(data[name]), currency)
        for name in _DECIMAL_FIELDS:
            if data.get(name) is not None:
                data[name] = Decimal(data[name])
        for name in _DATE_FIELDS:
            if data.get(name):
                data[name] = date.fromisoformat(data[name])
        for name in _DATETIME_FIELDS:
            if data.get(name):
                data[name] = datetime.fromisoformat(data[name])
        return SaleCase.from_dict(data)
