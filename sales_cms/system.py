"""
Case Management System

Wires storage, clock and every manager together from a SalesCMSConfig.
"""

from typing import Optional

from .config import SalesCMSConfig, get_config
from .currency import Currency
from .dates import Clock, SystemClock
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .inventory import UnitManager
from .clients import ClientManager, BrokerManager
from .schedule import ScheduleManager
from .payments import PaymentRecorder
from .summary import CaseSummarizer
from .cases import CaseManager, SequentialCaseIdAllocator
from .approvals import ApprovalManager, ApprovalRequestType
from .reporting import FinanceReporter


class CaseManagementSystem:
    """Sales case management with all components initialized"""

    def __init__(self, config: Optional[SalesCMSConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 clock: Optional[Clock] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config)
        self.clock = clock or SystemClock()
        self.base_currency = Currency[self.config.base_currency]

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.unit_manager = UnitManager(self.storage, self.audit_trail, base_currency=self.base_currency)
        self.client_manager = ClientManager(self.storage, self.audit_trail)
        self.broker_manager = BrokerManager(self.storage, self.audit_trail)
        self.schedule_manager = ScheduleManager(self.storage, self.audit_trail,
                                                base_currency=self.base_currency)
        self.payment_recorder = PaymentRecorder(
            self.storage, self.schedule_manager, self.audit_trail,
            max_retries=self.config.allocation_max_retries,
            base_currency=self.base_currency
        )
        self.summarizer = CaseSummarizer(self.schedule_manager, self.payment_recorder, self.clock,
                                         base_currency=self.base_currency)
        self.case_manager = CaseManager(
            self.storage,
            self.audit_trail,
            self.unit_manager,
            self.client_manager,
            self.broker_manager,
            self.schedule_manager,
            case_id_allocator=SequentialCaseIdAllocator(
                self.storage, self.config.case_id_prefix, self.config.case_id_width
            ),
            clock=self.clock,
            default_reservation_amount=self.config.default_reservation_amount,
            default_final_payment_pct=self.config.default_final_payment_pct,
            down_payment_offset_days=self.config.down_payment_offset_days,
            monthly_start_offset_months=self.config.monthly_start_offset_months,
            final_payment_offset_months=self.config.final_payment_offset_months,
            base_currency=self.base_currency
        )
        self.approval_manager = ApprovalManager(self.storage, self.audit_trail, self.case_manager)
        self.reporter = FinanceReporter(
            self.case_manager, self.client_manager, self.schedule_manager,
            self.payment_recorder, self.summarizer, self.clock,
            base_currency=self.base_currency
        )

    def open_case(self, requested_by: Optional[str] = None, **case_fields):
        """
        Create a case and queue its new_case approval

        Returns:
            (SaleCase, ApprovalRequest) tuple
        """
        with self.storage.atomic():
            case = self.case_manager.create_case(user_id=requested_by, **case_fields)
            approval = self.approval_manager.request_approval(
                case.id, ApprovalRequestType.NEW_CASE, requested_by=requested_by
            )
        return case, approval

    def close(self) -> None:
        self.storage.close()
