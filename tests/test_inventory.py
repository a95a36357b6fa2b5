"""
Test suite for unit inventory
"""

import pytest
from decimal import Decimal

from sales_cms.currency import Money
from sales_cms.storage import InMemoryStorage
from sales_cms.audit import AuditTrail, AuditEventType
from sales_cms.errors import ValidationError, NotFoundError
from sales_cms.inventory import UnitManager, UnitStatus, parse_block_lot


@pytest.fixture
def audit_trail():
    return AuditTrail(InMemoryStorage())


@pytest.fixture
def unit_manager(audit_trail):
    return UnitManager(audit_trail.storage, audit_trail)


class TestParseBlockLot:

    @pytest.mark.parametrize("text,expected", [
        ("C4-23", ("C4", "23")),
        ("c-12-7", ("C-12", "7")),
        ("Manzana C4 Lote 23", ("C4", "23")),
        ("manzana c10, lot 5", ("C10", "5")),
    ])
    def test_known_formats(self, text, expected):
        assert parse_block_lot(text) == expected

    @pytest.mark.parametrize("text", ["", "Lot 23", "A4-23", "C4/23"])
    def test_unrecognized(self, text):
        assert parse_block_lot(text) is None


class TestUnitManager:

    def test_create_unit(self, unit_manager, audit_trail):
        unit = unit_manager.create_unit(" c4 ", "23", area_m2="312.5",
                                        list_price=Money(Decimal('1200000')), phase="2")

        assert unit.block == "C4"
        assert unit.label == "C4-23"
        assert unit.status == UnitStatus.AVAILABLE
        loaded = unit_manager.require_unit(unit.id)
        assert loaded.area_m2 == Decimal('312.5')
        assert loaded.list_price == Money(Decimal('1200000'))
        assert len(audit_trail.get_events_by_type(AuditEventType.UNIT_CREATED)) == 1

    def test_duplicate_unit_rejected(self, unit_manager):
        unit_manager.create_unit("C4", "23")
        with pytest.raises(ValidationError):
            unit_manager.create_unit("c4", "23")

    def test_requires_block_and_lot(self, unit_manager):
        with pytest.raises(ValidationError):
            unit_manager.create_unit("C4", "")

    def test_rejects_non_positive_list_price(self, unit_manager):
        with pytest.raises(ValidationError):
            unit_manager.create_unit("C4", "1", list_price=Money(Decimal('0')))

    def test_find_and_list(self, unit_manager):
        unit_manager.create_unit("C4", "10")
        unit_manager.create_unit("C4", "9")
        unit_manager.create_unit("C2", "1")

        assert unit_manager.find_unit("c4", "9").label == "C4-9"
        assert unit_manager.find_unit("C4", "99") is None
        assert [u.label for u in unit_manager.list_units()] == ["C2-1", "C4-9", "C4-10"]
        assert [u.label for u in unit_manager.list_units(block="c4")] == ["C4-9", "C4-10"]

    def test_reserve_sell_lifecycle(self, unit_manager, audit_trail):
        unit = unit_manager.create_unit("C4", "23")

        assert unit_manager.reserve_unit(unit.id, "case-1").status == UnitStatus.RESERVED
        assert unit_manager.list_units(status=UnitStatus.AVAILABLE) == []
        assert unit_manager.mark_sold(unit.id, "case-1").status == UnitStatus.SOLD

        with pytest.raises(ValidationError):
            unit_manager.release_unit(unit.id)

        events = audit_trail.get_events_for_entity("unit", unit.id)
        assert [e.metadata.get("new_status") for e in events[1:]] == ["reserved", "sold"]

    def test_cannot_sell_available_unit(self, unit_manager):
        unit = unit_manager.create_unit("C4", "23")
        with pytest.raises(ValidationError):
            unit_manager.mark_sold(unit.id)

    def test_block_and_unblock(self, unit_manager):
        unit = unit_manager.create_unit("C4", "23")

        blocked = unit_manager.block_unit(unit.id, "easement survey")
        assert blocked.status == UnitStatus.BLOCKED
        assert unit_manager.require_unit(unit.id).notes == "easement survey"

        with pytest.raises(ValidationError):
            unit_manager.reserve_unit(unit.id)

        assert unit_manager.unblock_unit(unit.id).status == UnitStatus.AVAILABLE
        with pytest.raises(ValidationError):
            unit_manager.unblock_unit(unit.id)

    def test_missing_unit(self, unit_manager):
        assert unit_manager.get_unit("nope") is None
        with pytest.raises(NotFoundError):
            unit_manager.reserve_unit("nope")
