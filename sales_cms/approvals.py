"""
Approval Queue Module

Requests that need a second person's sign-off before a case changes:
new-case intake, price changes, amendments and cancellations.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .logging_config import log_action
from .errors import ValidationError, NotFoundError
from .cases import CaseManager, CaseStatus


logger = logging.getLogger("sales_cms.approvals")


class ApprovalStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ApprovalRequestType(Enum):
    NEW_CASE = "new_case"
    PRICE_CHANGE = "price_change"
    AMENDMENT = "amendment"
    CANCELLATION = "cancellation"


@dataclass
class ApprovalRequest(StorageRecord):
    case_id: str
    request_type: ApprovalRequestType
    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_by: Optional[str] = None
    request_notes: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING


class ApprovalManager:
    """
    Manages the approval queue

    Approving a new_case request activates the case and approving a
    cancellation cancels it; rejecting a new_case request cancels the case.
    Price changes and amendments are recorded for manual follow-up.
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 case_manager: CaseManager):
        self.storage = storage
        self.audit_trail = audit_trail
        self.case_manager = case_manager
        self.table_name = "approvals"

    def request_approval(
        self,
        case_id: str,
        request_type: ApprovalRequestType,
        requested_by: Optional[str] = None,
        notes: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> ApprovalRequest:
        """
        Open an approval request for a case

        Raises:
            NotFoundError: If the case does not exist
            ValidationError: If the case already has a pending request of this type
        """
        with self.storage.atomic():
            self.case_manager.require_case(case_id)
            duplicates = self.storage.find(self.table_name, {
                "case_id": case_id,
                "request_type": request_type.value,
                "status": ApprovalStatus.PENDING.value
            })
            if duplicates:
                raise ValidationError(
                    f"Case {case_id} already has a pending {request_type.value} request",
                    "approval", duplicates[0]['id'], "request"
                )

            now = datetime.now(timezone.utc)
            request = ApprovalRequest(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                case_id=case_id,
                request_type=request_type,
                requested_by=requested_by,
                request_notes=notes,
                payload=payload or {}
            )
            self._save_request(request)
            self.audit_trail.log_event(
                event_type=AuditEventType.APPROVAL_REQUESTED,
                entity_type="approval",
                entity_id=request.id,
                metadata={"case_id": case_id, "request_type": request_type.value},
                user_id=requested_by
            )
        return request

    def get_approval(self, approval_id: str) -> Optional[ApprovalRequest]:
        data = self.storage.load(self.table_name, approval_id)
        if data:
            return self._request_from_dict(data)
        return None

    def require_approval(self, approval_id: str) -> ApprovalRequest:
        request = self.get_approval(approval_id)
        if not request:
            raise NotFoundError(f"Approval request {approval_id} not found",
                                "approval", approval_id, "get")
        return request

    def list_pending(self, request_type: Optional[ApprovalRequestType] = None) -> List[ApprovalRequest]:
        """Pending requests, oldest first"""
        filters = {"status": ApprovalStatus.PENDING.value}
        if request_type:
            filters["request_type"] = request_type.value
        requests = [self._request_from_dict(row) for row in self.storage.find(self.table_name, filters)]
        requests.sort(key=lambda r: r.created_at)
        return requests

    def list_for_case(self, case_id: str) -> List[ApprovalRequest]:
        requests = [self._request_from_dict(row)
                    for row in self.storage.find(self.table_name, {"case_id": case_id})]
        requests.sort(key=lambda r: r.created_at)
        return requests

    def approve(self, approval_id: str, reviewed_by: str,
                notes: Optional[str] = None) -> ApprovalRequest:
        return self._review(approval_id, ApprovalStatus.APPROVED, reviewed_by, notes)

    def reject(self, approval_id: str, reviewed_by: str,
               notes: Optional[str] = None) -> ApprovalRequest:
        return self._review(approval_id, ApprovalStatus.REJECTED, reviewed_by, notes)

    def cancel_request(self, approval_id: str, user_id: Optional[str] = None) -> ApprovalRequest:
        """Withdraw a pending request without touching the case"""
        return self._review(approval_id, ApprovalStatus.CANCELLED, user_id, None)

    def _review(self, approval_id: str, outcome: ApprovalStatus,
                reviewed_by: Optional[str], notes: Optional[str]) -> ApprovalRequest:
        with self.storage.atomic():
            request = self.require_approval(approval_id)
            if not request.is_pending:
                raise ValidationError(
                    f"Approval request {approval_id} is already {request.status.value}",
                    "approval", approval_id, outcome.value
                )

            now = datetime.now(timezone.utc)
            request.status = outcome
            request.reviewed_by = reviewed_by
            request.reviewed_at = now
            request.review_notes = notes
            request.updated_at = now
            self._save_request(request)

            case_status = self._case_outcome(request.request_type, outcome)
            if case_status is not None:
                self.case_manager.update_status(request.case_id, case_status,
                                                notes=notes, user_id=reviewed_by)

            self.audit_trail.log_event(
                event_type=AuditEventType.APPROVAL_REVIEWED,
                entity_type="approval",
                entity_id=request.id,
                metadata={"case_id": request.case_id, "request_type": request.request_type.value,
                          "outcome": outcome.value, "notes": notes},
                user_id=reviewed_by
            )

        log_action(logger, "info", "Approval reviewed", user_id=reviewed_by,
                   action=outcome.value, resource=f"approval/{approval_id}",
                   extra={"case_id": request.case_id, "request_type": request.request_type.value})
        return request

    @staticmethod
    def _case_outcome(request_type: ApprovalRequestType,
                      outcome: ApprovalStatus) -> Optional[CaseStatus]:
        if request_type == ApprovalRequestType.NEW_CASE:
            if outcome == ApprovalStatus.APPROVED:
                return CaseStatus.ACTIVE
            if outcome == ApprovalStatus.REJECTED:
                return CaseStatus.CANCELLED
        if request_type == ApprovalRequestType.CANCELLATION and outcome == ApprovalStatus.APPROVED:
            return CaseStatus.CANCELLED
        return None

    def _save_request(self, request: ApprovalRequest) -> None:
        result = request.to_dict()
        result['request_type'] = request.request_type.value
        result['status'] = request.status.value
        result['reviewed_at'] = request.reviewed_at.isoformat() if request.reviewed_at else None
        self.storage.save(self.table_name, request.id, result)

    def _request_from_dict(self, data: Dict) -> ApprovalRequest:
        data = dict(data)
        data['request_type'] = ApprovalRequestType(data['request_type'])
        data['status'] = ApprovalStatus(data['status'])
        if data.get('reviewed_at'):
            data['reviewed_at'] = datetime.fromisoformat(data['reviewed_at'])
        return ApprovalRequest.from_dict(data)
