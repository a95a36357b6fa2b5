"""
Client and Broker Module

Buyers (a primary buyer with an optional co-buyer) and the brokers who bring
them in. Client identity is stable once linked to a case: edits are allowed,
deletion is refused while any case references the client.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
import logging
import uuid
import re

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError, NotFoundError


logger = logging.getLogger("sales_cms.clients")

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

# Fields callers may change through update_client
EDITABLE_CLIENT_FIELDS = (
    "full_name", "email", "phone",
    "secondary_name", "secondary_email", "secondary_phone",
    "address_line1", "city", "state", "country", "postal_code",
    "nationality", "rfc", "is_llc", "llc_name", "notes",
)


def _normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


def _check_email(email: Optional[str], entity_type: str, entity_id: str) -> None:
    if email and not EMAIL_PATTERN.match(email):
        raise ValidationError(f"Invalid email format: {email}", entity_type, entity_id, "validate")


@dataclass
class Client(StorageRecord):
    """A buyer, with an optional co-buyer"""
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    secondary_name: Optional[str] = None
    secondary_email: Optional[str] = None
    secondary_phone: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = "Mexico"
    postal_code: Optional[str] = None
    nationality: Optional[str] = None
    rfc: Optional[str] = None
    is_llc: bool = False
    llc_name: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        if not self.full_name or not self.full_name.strip():
            raise ValidationError("Client full name is required", "client", self.id, "validate")
        _check_email(self.email, "client", self.id)
        _check_email(self.secondary_email, "client", self.id)
        if self.is_llc and not self.llc_name:
            raise ValidationError("LLC buyers need an llc_name", "client", self.id, "validate")

    @property
    def display_name(self) -> str:
        """Buyer name as printed on reports ("A & B" for co-buyers)"""
        if self.is_llc and self.llc_name:
            return self.llc_name
        if self.secondary_name:
            return f"{self.full_name} & {self.secondary_name}"
        return self.full_name


@dataclass
class Broker(StorageRecord):
    """A selling broker / agent"""
    full_name: str
    agency: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    default_commission_pct: Decimal = Decimal('5.00')
    active: bool = True

    def __post_init__(self):
        if not self.full_name or not self.full_name.strip():
            raise ValidationError("Broker full name is required", "broker", self.id, "validate")
        _check_email(self.email, "broker", self.id)
        if not Decimal('0') <= self.default_commission_pct <= Decimal('100'):
            raise ValidationError("Commission percentage must be between 0 and 100",
                                  "broker", self.id, "validate")


class ClientManager:
    """
    Manages buyer records
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 case_table: str = "cases"):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "clients"
        self.case_table = case_table

    def create_client(self, full_name: str, email: Optional[str] = None,
                      phone: Optional[str] = None, **details: Any) -> Client:
        """
        Create a new client

        Args:
            full_name: Primary buyer's name
            email: Primary buyer's email
            phone: Primary buyer's phone
            **details: Any other Client field (secondary buyer, address, LLC info)

        Returns:
            Created Client object
        """
        unknown = set(details) - set(EDITABLE_CLIENT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown client fields: {sorted(unknown)}", "client", None, "create")
        if 'secondary_email' in details:
            details['secondary_email'] = _normalize_email(details['secondary_email'])

        now = datetime.now(timezone.utc)
        client = Client(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            full_name=full_name.strip() if full_name else full_name,
            email=_normalize_email(email),
            phone=phone,
            **details
        )
        self._save_client(client)
        logger.info("Client created", extra={"extra": {"client_id": client.id}})

        self.audit_trail.log_event(
            event_type=AuditEventType.CLIENT_CREATED,
            entity_type="client",
            entity_id=client.id,
            metadata={"full_name": client.full_name, "email": client.email}
        )
        return client

    def find_or_create_client(self, full_name: str, email: Optional[str] = None,
                              phone: Optional[str] = None, **details: Any) -> Client:
        """Return the client with this email, creating one if none exists"""
        if email:
            existing = self.get_client_by_email(email)
            if existing:
                return existing
        return self.create_client(full_name, email=email, phone=phone, **details)

    def get_client(self, client_id: str) -> Optional[Client]:
        data = self.storage.load(self.table_name, client_id)
        if data:
            return self._client_from_dict(data)
        return None

    def require_client(self, client_id: str) -> Client:
        client = self.get_client(client_id)
        if not client:
            raise NotFoundError(f"Client {client_id} not found", "client", client_id, "get")
        return client

    def get_client_by_email(self, email: str) -> Optional[Client]:
        rows = self.storage.find(self.table_name, {"email": _normalize_email(email)})
        if rows:
            return self._client_from_dict(rows[0])
        return None

    def list_clients(self, search: Optional[str] = None) -> List[Client]:
        clients = [self._client_from_dict(row) for row in self.storage.load_all(self.table_name)]
        if search:
            term = search.strip().lower()
            clients = [
                c for c in clients
                if term in c.full_name.lower()
                or (c.email and term in c.email)
                or (c.secondary_name and term in c.secondary_name.lower())
            ]
        clients.sort(key=lambda c: c.full_name.lower())
        return clients

    def update_client(self, client_id: str, **changes: Any) -> Client:
        """Update client contact details"""
        client = self.require_client(client_id)

        unknown = set(changes) - set(EDITABLE_CLIENT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown client fields: {sorted(unknown)}", "client", client_id, "update")

        old_data = {field: getattr(client, field) for field in changes}
        for field, value in changes.items():
            if field in ("email", "secondary_email"):
                value = _normalize_email(value)
            setattr(client, field, value)

        # Re-run field validation on the edited record
        client.__post_init__()
        client.updated_at = datetime.now(timezone.utc)
        self._save_client(client)

        self.audit_trail.log_event(
            event_type=AuditEventType.CLIENT_UPDATED,
            entity_type="client",
            entity_id=client.id,
            metadata={"old_data": old_data,
                      "new_data": {field: getattr(client, field) for field in changes}}
        )
        return client

    def delete_client(self, client_id: str) -> bool:
        """
        Delete a client

        Raises:
            NotFoundError: If the client does not exist
            ValidationError: If any case still references the client
        """
        client = self.require_client(client_id)
        with self.storage.atomic():
            if self.storage.find(self.case_table, {"client_id": client_id}):
                raise ValidationError(
                    f"Client {client.full_name} is referenced by a case and cannot be deleted",
                    "client", client_id, "delete"
                )
            self.storage.delete(self.table_name, client_id)
            self.audit_trail.log_event(
                event_type=AuditEventType.CLIENT_DELETED,
                entity_type="client",
                entity_id=client_id,
                metadata={"full_name": client.full_name}
            )
        return True

    def _save_client(self, client: Client) -> None:
        self.storage.save(self.table_name, client.id, client.to_dict())

    def _client_from_dict(self, data: Dict) -> Client:
        return Client.from_dict(dict(data))


class BrokerManager:
    """
    Manages broker records
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "brokers"

    def create_broker(self, full_name: str, agency: Optional[str] = None,
                      email: Optional[str] = None, phone: Optional[str] = None,
                      default_commission_pct: Decimal = Decimal('5.00')) -> Broker:
        now = datetime.now(timezone.utc)
        broker = Broker(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            full_name=full_name.strip() if full_name else full_name,
            agency=agency,
            email=_normalize_email(email),
            phone=phone,
            default_commission_pct=Decimal(str(default_commission_pct))
        )
        self._save_broker(broker)

        self.audit_trail.log_event(
            event_type=AuditEventType.BROKER_CREATED,
            entity_type="broker",
            entity_id=broker.id,
            metadata={"full_name": broker.full_name, "agency": agency}
        )
        return broker

    def find_or_create_broker(self, full_name: str, email: Optional[str] = None,
                              agency: Optional[str] = None,
                              phone: Optional[str] = None) -> Broker:
        """Return the broker with this email, creating one if none exists"""
        if email:
            rows = self.storage.find(self.table_name, {"email": _normalize_email(email)})
            if rows:
                return self._broker_from_dict(rows[0])
        return self.create_broker(full_name, agency=agency, email=email, phone=phone)

    def get_broker(self, broker_id: str) -> Optional[Broker]:
        data = self.storage.load(self.table_name, broker_id)
        if data:
            return self._broker_from_dict(data)
        return None

    def require_broker(self, broker_id: str) -> Broker:
        broker = self.get_broker(broker_id)
        if not broker:
            raise NotFoundError(f"Broker {broker_id} not found", "broker", broker_id, "get")
        return broker

    def list_brokers(self, active_only: bool = True) -> List[Broker]:
        brokers = [self._broker_from_dict(row) for row in self.storage.load_all(self.table_name)]
        if active_only:
            brokers = [b for b in brokers if b.active]
        brokers.sort(key=lambda b: b.full_name.lower())
        return brokers

    def _save_broker(self, broker: Broker) -> None:
        self.storage.save(self.table_name, broker.id, broker.to_dict())

    def _broker_from_dict(self, data: Dict) -> Broker:
        data = dict(data)
        data['default_commission_pct'] = Decimal(data['default_commission_pct'])
        return Broker.from_dict(data)
