"""
Inventory Module

Sellable units (lots) identified by block (manzana) and lot number, and the
unit status lifecycle driven by case creation, execution and cancellation.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union
from enum import Enum
import logging
import uuid
import re

from .currency import Money, Currency, Numeric, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError, NotFoundError


logger = logging.getLogger("sales_cms.inventory")


class UnitStatus(Enum):
    """Unit availability status"""
    AVAILABLE = "available"
    RESERVED = "reserved"   # a case has been opened against the unit
    SOLD = "sold"           # the case was executed
    BLOCKED = "blocked"     # withheld from sale


ALLOWED_UNIT_TRANSITIONS = {
    UnitStatus.AVAILABLE: {UnitStatus.RESERVED, UnitStatus.BLOCKED},
    UnitStatus.RESERVED: {UnitStatus.SOLD, UnitStatus.AVAILABLE},
    UnitStatus.BLOCKED: {UnitStatus.AVAILABLE},
    UnitStatus.SOLD: set(),
}


_DASH_FORMAT = re.compile(r'^(C-?\d+)-(\d+)$', re.IGNORECASE)
_LONG_FORMAT = re.compile(r'manzana\s*(C-?\d+).*?lote?\s*(\d+)', re.IGNORECASE)


def parse_block_lot(text: str) -> Optional[Tuple[str, str]]:
    """
    Parse a unit reference such as "C4-23" or "Manzana C4 Lote 23"

    Returns:
        (block, lot) tuple, or None when the text matches neither format
    """
    if not text:
        return None
    text = text.strip()
    match = _DASH_FORMAT.match(text) or _LONG_FORMAT.search(text)
    if match:
        return match.group(1).upper(), match.group(2)
    return None


@dataclass
class Unit(StorageRecord):
    """A sellable lot"""
    block: str
    lot: str
    area_m2: Optional[Decimal] = None
    list_price: Optional[Money] = None
    status: UnitStatus = UnitStatus.AVAILABLE
    phase: Optional[str] = None
    property_type: str = "lot"
    notes: Optional[str] = None

    def __post_init__(self):
        if not self.block or not self.lot:
            raise ValidationError("Unit block and lot are required", "unit", self.id, "create")
        if self.list_price is not None and not self.list_price.is_positive():
            raise ValidationError("Unit list price must be positive", "unit", self.id, "create")

    @property
    def label(self) -> str:
        return f"{self.block}-{self.lot}"

    @property
    def is_available(self) -> bool:
        return self.status == UnitStatus.AVAILABLE


class UnitManager:
    """
    Manages unit inventory and status transitions
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 base_currency: Currency = Currency.MXN):
        self.storage = storage
        self.audit_trail = audit_trail
        self.base_currency = base_currency
        self.table_name = "units"

    def create_unit(
        self,
        block: str,
        lot: str,
        area_m2=None,
        list_price: Optional[Union[Money, Numeric]] = None,
        phase: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Unit:
        """
        Add a unit to inventory

        Raises:
            ValidationError: If (block, lot) already exists
        """
        block = (block or "").strip().upper()
        lot = (lot or "").strip()
        if list_price is not None and not isinstance(list_price, Money):
            list_price = Money(to_decimal(list_price), self.base_currency)
        if list_price is not None and list_price.currency != self.base_currency:
            raise ValidationError(
                f"List price must be in {self.base_currency.code}, got {list_price.currency.code}",
                "unit", f"{block}-{lot}", "create"
            )

        with self.storage.atomic():
            if self.find_unit(block, lot):
                raise ValidationError(f"Unit {block}-{lot} already exists", "unit", f"{block}-{lot}", "create")

            now = datetime.now(timezone.utc)
            unit = Unit(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                block=block,
                lot=lot,
                area_m2=to_decimal(area_m2) if area_m2 is not None else None,
                list_price=list_price,
                phase=phase,
                notes=notes
            )
            self._save_unit(unit)
            self.audit_trail.log_event(
                event_type=AuditEventType.UNIT_CREATED,
                entity_type="unit",
                entity_id=unit.id,
                metadata={"block": block, "lot": lot,
                          "list_price": str(list_price.amount) if list_price else None}
            )

        logger.info("Unit created", extra={"extra": {"unit_id": unit.id, "label": unit.label}})
        return unit

    def get_unit(self, unit_id: str) -> Optional[Unit]:
        data = self.storage.load(self.table_name, unit_id)
        if data:
            return self._unit_from_dict(data)
        return None

    def require_unit(self, unit_id: str) -> Unit:
        unit = self.get_unit(unit_id)
        if not unit:
            raise NotFoundError(f"Unit {unit_id} not found", "unit", unit_id, "get")
        return unit

    def find_unit(self, block: str, lot: str) -> Optional[Unit]:
        """Find a unit by its block and lot"""
        rows = self.storage.find(self.table_name, {"block": block.strip().upper(), "lot": lot.strip()})
        if rows:
            return self._unit_from_dict(rows[0])
        return None

    def list_units(self, status: Optional[UnitStatus] = None,
                   block: Optional[str] = None) -> List[Unit]:
        filters = {}
        if status:
            filters["status"] = status.value
        if block:
            filters["block"] = block.strip().upper()
        units = [self._unit_from_dict(row) for row in self.storage.find(self.table_name, filters)]
        units.sort(key=lambda u: (u.block, _lot_sort_key(u.lot)))
        return units

    def reserve_unit(self, unit_id: str, case_id: Optional[str] = None) -> Unit:
        return self._transition(unit_id, UnitStatus.RESERVED, case_id)

    def mark_sold(self, unit_id: str, case_id: Optional[str] = None) -> Unit:
        return self._transition(unit_id, UnitStatus.SOLD, case_id)

    def release_unit(self, unit_id: str, case_id: Optional[str] = None) -> Unit:
        return self._transition(unit_id, UnitStatus.AVAILABLE, case_id)

    def block_unit(self, unit_id: str, reason: Optional[str] = None) -> Unit:
        with self.storage.atomic():
            unit = self._transition(unit_id, UnitStatus.BLOCKED, None)
            if reason:
                unit.notes = reason
                self._save_unit(unit)
        return unit

    def unblock_unit(self, unit_id: str) -> Unit:
        with self.storage.atomic():
            unit = self.require_unit(unit_id)
            if unit.status != UnitStatus.BLOCKED:
                raise ValidationError(f"Unit {unit.label} is not blocked", "unit", unit_id, "unblock")
            return self._transition(unit_id, UnitStatus.AVAILABLE, None)

    def _transition(self, unit_id: str, new_status: UnitStatus, case_id: Optional[str]) -> Unit:
        with self.storage.atomic():
            unit = self.require_unit(unit_id)
            if new_status not in ALLOWED_UNIT_TRANSITIONS[unit.status]:
                raise ValidationError(
                    f"Unit {unit.label} cannot move from {unit.status.value} to {new_status.value}",
                    "unit", unit_id, new_status.value
                )

            old_status = unit.status
            unit.status = new_status
            unit.updated_at = datetime.now(timezone.utc)
            self._save_unit(unit)
            self.audit_trail.log_event(
                event_type=AuditEventType.UNIT_STATUS_CHANGED,
                entity_type="unit",
                entity_id=unit.id,
                metadata={"old_status": old_status.value, "new_status": new_status.value,
                          "case_id": case_id}
            )
        return unit

    def _save_unit(self, unit: Unit) -> None:
        self.storage.save(self.table_name, unit.id, self._unit_to_dict(unit))

    def _unit_to_dict(self, unit: Unit) -> Dict:
        result = unit.to_dict()
        result['status'] = unit.status.value
        result['area_m2'] = str(unit.area_m2) if unit.area_m2 is not None else None
        if unit.list_price is not None:
            result['list_price'] = str(unit.list_price.amount)
            result['currency'] = unit.list_price.currency.code
        return result

    def _unit_from_dict(self, data: Dict) -> Unit:
        list_price = None
        if data.get('list_price') is not None:
            list_price = Money(Decimal(data['list_price']),
                               Currency[data.get('currency', self.base_currency.code)])

        return Unit(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            block=data['block'],
            lot=data['lot'],
            area_m2=Decimal(data['area_m2']) if data.get('area_m2') is not None else None,
            list_price=list_price,
            status=UnitStatus(data['status']),
            phase=data.get('phase'),
            property_type=data.get('property_type', 'lot'),
            notes=data.get('notes')
        )


def _lot_sort_key(lot: str):
    return (0, int(lot), lot) if lot.isdigit() else (1, 0, lot)
