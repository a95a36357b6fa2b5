"""
Test suite for clients and brokers
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from sales_cms.storage import InMemoryStorage
from sales_cms.audit import AuditTrail, AuditEventType
from sales_cms.errors import ValidationError, NotFoundError
from sales_cms.clients import ClientManager, BrokerManager


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def client_manager(storage, audit_trail):
    return ClientManager(storage, audit_trail)


@pytest.fixture
def broker_manager(storage, audit_trail):
    return BrokerManager(storage, audit_trail)


class TestClientManager:

    def test_create_client(self, client_manager, audit_trail):
        client = client_manager.create_client(
            "Ana Torres", email=" Ana@Example.com ", phone="+52 998 000 0000",
            secondary_name="Luis Ortega", city="Bacalar"
        )

        assert client.email == "ana@example.com"
        assert client.display_name == "Ana Torres & Luis Ortega"
        assert client.country == "Mexico"
        assert client_manager.require_client(client.id) == client
        assert len(audit_trail.get_events_by_type(AuditEventType.CLIENT_CREATED)) == 1

    def test_llc_display_name(self, client_manager):
        client = client_manager.create_client("Ana Torres", is_llc=True, llc_name="Costa Azul LLC")
        assert client.display_name == "Costa Azul LLC"

    @pytest.mark.parametrize("kwargs", [
        {"full_name": "  "},
        {"full_name": "Ana", "email": "not-an-email"},
        {"full_name": "Ana", "secondary_email": "bad@"},
        {"full_name": "Ana", "is_llc": True},
        {"full_name": "Ana", "favourite_color": "blue"},
    ])
    def test_validation(self, client_manager, kwargs):
        with pytest.raises(ValidationError):
            client_manager.create_client(**kwargs)

    def test_find_or_create(self, client_manager):
        first = client_manager.find_or_create_client("Ana Torres", email="ana@example.com")
        second = client_manager.find_or_create_client("Ana T.", email="ANA@example.com")
        assert first.id == second.id
        assert len(client_manager.list_clients()) == 1

    def test_list_and_search(self, client_manager):
        client_manager.create_client("Zoe Park", email="zoe@example.com")
        client_manager.create_client("ana torres", secondary_name="Luis Ortega")

        assert [c.full_name for c in client_manager.list_clients()] == ["ana torres", "Zoe Park"]
        assert [c.full_name for c in client_manager.list_clients("ORTEGA")] == ["ana torres"]
        assert [c.full_name for c in client_manager.list_clients("zoe@")] == ["Zoe Park"]

    def test_update_client(self, client_manager, audit_trail):
        client = client_manager.create_client("Ana Torres", email="ana@example.com")

        updated = client_manager.update_client(client.id, phone="123", email="NEW@example.com")
        assert updated.phone == "123"
        assert client_manager.require_client(client.id).email == "new@example.com"

        event = audit_trail.get_events_by_type(AuditEventType.CLIENT_UPDATED)[0]
        assert event.metadata["old_data"]["email"] == "ana@example.com"

    def test_update_revalidates(self, client_manager):
        client = client_manager.create_client("Ana Torres")
        with pytest.raises(ValidationError):
            client_manager.update_client(client.id, email="broken")
        assert client_manager.require_client(client.id).email is None

    def test_delete_client(self, client_manager):
        client = client_manager.create_client("Ana Torres")
        assert client_manager.delete_client(client.id)
        assert client_manager.get_client(client.id) is None
        with pytest.raises(NotFoundError):
            client_manager.delete_client(client.id)

    def test_delete_client_with_case_rejected(self, storage, client_manager):
        client = client_manager.create_client("Ana Torres")
        now = datetime.now(timezone.utc).isoformat()
        storage.save("cases", "case-1", {"id": "case-1", "client_id": client.id,
                                         "created_at": now, "updated_at": now})

        with pytest.raises(ValidationError):
            client_manager.delete_client(client.id)
        assert client_manager.get_client(client.id) is not None


class TestBrokerManager:

    def test_create_broker(self, broker_manager):
        broker = broker_manager.create_broker("Marta Ruiz", agency="Caribe Realty",
                                              email="Marta@Caribe.mx", default_commission_pct="6.5")
        loaded = broker_manager.require_broker(broker.id)
        assert loaded.default_commission_pct == Decimal('6.5')
        assert loaded.email == "marta@caribe.mx"
        assert loaded.active

    def test_commission_bounds(self, broker_manager):
        with pytest.raises(ValidationError):
            broker_manager.create_broker("Marta Ruiz", default_commission_pct=Decimal('101'))

    def test_find_or_create(self, broker_manager):
        first = broker_manager.find_or_create_broker("Marta Ruiz", email="marta@caribe.mx")
        second = broker_manager.find_or_create_broker("M. Ruiz", email="MARTA@caribe.mx")
        assert first.id == second.id
        assert [b.full_name for b in broker_manager.list_brokers()] == ["Marta Ruiz"]

    def test_missing_broker(self, broker_manager):
        with pytest.raises(NotFoundError):
            broker_manager.require_broker("nope")
