"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection, integrity verification,
and audit events joining the enclosing transaction.
"""

import pytest
import threading
from datetime import datetime, timezone, date
from decimal import Decimal

from sales_cms.storage import InMemoryStorage
from sales_cms.audit import AuditTrail, AuditEvent, AuditEventType


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def _event(self, **overrides):
        now = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
        fields = dict(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.PAYMENT_RECORDED,
            entity_type="payment",
            entity_id="PAY001",
            previous_hash="abc123",
            current_hash="",
            metadata={"amount": "16666.67"},
            user_id="staff-1"
        )
        fields.update(overrides)
        return AuditEvent(**fields)

    def test_metadata_serialization(self):
        """Decimals, dates and enums are stored as plain JSON values"""
        event = self._event(metadata={
            "amount": Decimal('1234.56'),
            "payment_date": date(2025, 1, 15),
            "event": AuditEventType.CASE_CREATED,
            "nested": {"values": [Decimal('1.10'), date(2025, 2, 1)]}
        })
        assert event.metadata["amount"] == "1234.56"
        assert event.metadata["payment_date"] == "2025-01-15"
        assert event.metadata["event"] == "case_created"
        assert event.metadata["nested"] == {"values": ["1.10", "2025-02-01"]}

    def test_hash_verification(self):
        event = self._event()
        event.current_hash = event.calculate_hash()
        assert event.verify_hash()

        event.metadata["amount"] = "1.00"
        assert not event.verify_hash()

    def test_hash_covers_previous_hash(self):
        first = self._event()
        second = self._event(previous_hash="different")
        assert first.calculate_hash() != second.calculate_hash()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    @pytest.fixture
    def storage(self):
        return InMemoryStorage()

    @pytest.fixture
    def audit_trail(self, storage):
        return AuditTrail(storage)

    def test_log_first_event(self, audit_trail):
        event = audit_trail.log_event(AuditEventType.UNIT_CREATED, "unit", "u1",
                                      {"block": "C4", "lot": "23"})
        assert event.previous_hash == ""
        assert event.verify_hash()
        assert audit_trail.count_events() == 1

    def test_events_chain(self, audit_trail):
        first = audit_trail.log_event(AuditEventType.CASE_CREATED, "case", "c1")
        second = audit_trail.log_event(AuditEventType.SCHEDULE_GENERATED, "case", "c1")
        third = audit_trail.log_event(AuditEventType.PAYMENT_RECORDED, "payment", "p1")

        assert second.previous_hash == first.current_hash
        assert third.previous_hash == second.current_hash
        assert audit_trail.verify_integrity() == {
            'valid': True, 'total_events': 3, 'hash_errors': [], 'chain_breaks': []
        }

    def test_get_events_for_entity(self, audit_trail):
        audit_trail.log_event(AuditEventType.CASE_CREATED, "case", "c1")
        audit_trail.log_event(AuditEventType.CASE_CREATED, "case", "c2")
        audit_trail.log_event(AuditEventType.CASE_STATUS_CHANGED, "case", "c1")

        events = audit_trail.get_events_for_entity("case", "c1")
        assert [e.event_type for e in events] == [
            AuditEventType.CASE_CREATED, AuditEventType.CASE_STATUS_CHANGED
        ]
        assert len(audit_trail.get_events_for_entity("case", "c1", limit=1)) == 1

    def test_get_events_by_type(self, audit_trail):
        audit_trail.log_event(AuditEventType.PAYMENT_RECORDED, "payment", "p1")
        audit_trail.log_event(AuditEventType.PAYMENT_VERIFIED, "payment", "p1")
        assert len(audit_trail.get_events_by_type(AuditEventType.PAYMENT_RECORDED)) == 1

    def test_detects_hash_tampering(self, storage, audit_trail):
        event = audit_trail.log_event(AuditEventType.PAYMENT_RECORDED, "payment", "p1",
                                      {"amount": "1000.00"})
        audit_trail.log_event(AuditEventType.PAYMENT_VERIFIED, "payment", "p1")

        row = storage.load("audit_events", event.id)
        row["metadata"]["amount"] = "10.00"
        storage.save("audit_events", event.id, row)

        result = audit_trail.verify_integrity()
        assert not result['valid']
        assert result['hash_errors'][0]['event_id'] == event.id

    def test_detects_chain_break(self, storage, audit_trail):
        audit_trail.log_event(AuditEventType.CASE_CREATED, "case", "c1")
        middle = audit_trail.log_event(AuditEventType.CASE_STATUS_CHANGED, "case", "c1")
        audit_trail.log_event(AuditEventType.CASE_STATUS_CHANGED, "case", "c1")

        storage.delete("audit_events", middle.id)

        result = audit_trail.verify_integrity()
        assert not result['valid']
        assert len(result['chain_breaks']) == 1

    def test_empty_trail_is_valid(self, audit_trail):
        assert audit_trail.verify_integrity()['valid']

    def test_disabled_trail_logs_nothing(self, storage):
        trail = AuditTrail(storage, enabled=False)
        assert trail.log_event(AuditEventType.CASE_CREATED, "case", "c1") is None
        assert trail.count_events() == 0

    def test_events_roll_back_with_enclosing_transaction(self, storage, audit_trail):
        audit_trail.log_event(AuditEventType.CASE_CREATED, "case", "c1")

        with pytest.raises(RuntimeError):
            with storage.atomic():
                audit_trail.log_event(AuditEventType.CASE_STATUS_CHANGED, "case", "c1")
                raise RuntimeError("boom")

        assert audit_trail.count_events() == 1
        # the next event chains onto the surviving head
        audit_trail.log_event(AuditEventType.CASE_STATUS_CHANGED, "case", "c1")
        assert audit_trail.verify_integrity()['valid']

    def test_new_trail_resumes_existing_chain(self, storage, audit_trail):
        last = audit_trail.log_event(AuditEventType.CASE_CREATED, "case", "c1")

        reopened = AuditTrail(storage)
        event = reopened.log_event(AuditEventType.CASE_STATUS_CHANGED, "case", "c1")
        assert event.previous_hash == last.current_hash

    def test_concurrent_event_logging(self, audit_trail):
        def worker(n):
            for i in range(10):
                audit_trail.log_event(AuditEventType.PAYMENT_RECORDED, "payment", f"p{n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert audit_trail.count_events() == 50
        assert audit_trail.verify_integrity()['valid']
