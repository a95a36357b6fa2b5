"""
Finance Reporting Module

Portfolio views over all cases: finance report with totals, overdue
installment list and dashboard statistics. Every per-case figure comes
from the case summary aggregator, so reports agree with the case view.
"""

from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import csv
import io
import json
import uuid

from .currency import Money, Currency
from .dates import Clock, month_key
from .cases import CaseManager, CaseStatus, SaleCase
from .clients import ClientManager
from .schedule import InstallmentStatus, ScheduleManager
from .payments import PaymentRecorder
from .summary import CaseSummarizer


class ReportFormat(Enum):
    DICT = "dict"
    JSON = "json"
    CSV = "csv"


@dataclass
class FinanceReportFilters:
    status: Optional[CaseStatus] = None
    block: Optional[str] = None
    broker_id: Optional[str] = None
    from_date: Optional[date] = None  # offer date, inclusive
    to_date: Optional[date] = None

    def matches(self, case: SaleCase) -> bool:
        if self.status and case.status != self.status:
            return False
        if self.block and case.block != self.block.strip().upper():
            return False
        if self.broker_id and case.broker_id != self.broker_id:
            return False
        if self.from_date and (case.offer_date is None or case.offer_date < self.from_date):
            return False
        if self.to_date and (case.offer_date is None or case.offer_date > self.to_date):
            return False
        return True


@dataclass
class ReportResult:
    """Result of a report execution"""
    report_id: str
    generated_at: datetime
    as_of: date
    data: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.metadata:
            self.metadata = {'row_count': len(self.data), 'currency': 'MXN'}


class FinanceReporter:
    """
    Builds finance reports across cases
    """

    def __init__(
        self,
        case_manager: CaseManager,
        client_manager: ClientManager,
        schedule_manager: ScheduleManager,
        payment_recorder: PaymentRecorder,
        summarizer: CaseSummarizer,
        clock: Clock,
        base_currency: Currency = Currency.MXN
    ):
        self.case_manager = case_manager
        self.client_manager = client_manager
        self.schedule_manager = schedule_manager
        self.payment_recorder = payment_recorder
        self.summarizer = summarizer
        self.clock = clock
        self.base_currency = base_currency

    def finance_report(self, filters: Optional[FinanceReportFilters] = None,
                       today: Optional[date] = None) -> ReportResult:
        """
        One row per case matching the filters

        Totals cover non-cancelled cases only; status counts cover every
        matching case.
        """
        filters = filters or FinanceReportFilters()
        as_of = today or self.clock.today()
        cases = [c for c in self.case_manager.list_cases() if filters.matches(c)]

        zero = Money.zero(self.base_currency)
        rows = []
        totals = {
            "case_count": 0,
            "sale_value": zero,
            "collected": zero,
            "refunded": zero,
            "balance": zero,
            "overdue": zero,
        }
        status_counts = {status.value: 0 for status in CaseStatus}

        for case in cases:
            summary = self.summarizer.summarize_case(case.id, as_of)
            client = self.client_manager.get_client(case.client_id)
            status_counts[case.status.value] += 1

            rows.append({
                "case_number": case.case_number,
                "buyer": client.display_name if client else "",
                "block": case.block,
                "lot": case.lot,
                "plan": case.plan_name,
                "sale_price": str(case.sale_price.amount),
                "total_paid": str(summary.total_paid.amount),
                "total_refunded": str(summary.total_refunded.amount),
                "balance": str(summary.balance.amount),
                "overdue": str(summary.overdue_amount.amount),
                "percent_paid": str(summary.percent_paid),
                "next_due_date": summary.next_due_date.isoformat() if summary.next_due_date else "",
                "status": case.status.value,
            })

            if case.status == CaseStatus.CANCELLED:
                continue
            totals["case_count"] += 1
            totals["sale_value"] = totals["sale_value"] + case.sale_price
            totals["collected"] = totals["collected"] + summary.total_paid
            totals["refunded"] = totals["refunded"] + summary.total_refunded
            totals["balance"] = totals["balance"] + summary.balance
            totals["overdue"] = totals["overdue"] + summary.overdue_amount

        serialized_totals = {
            key: str(value.amount) if isinstance(value, Money) else value
            for key, value in totals.items()
        }
        serialized_totals["status_counts"] = status_counts

        return ReportResult(
            report_id=str(uuid.uuid4()),
            generated_at=datetime.now(timezone.utc),
            as_of=as_of,
            data=rows,
            totals=serialized_totals,
            metadata={'row_count': len(rows), 'currency': self.base_currency.code}
        )

    def overdue_installments(self, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """Open installments due before today on non-cancelled cases, oldest first"""
        as_of = today or self.clock.today()
        result = []
        for case in self.case_manager.list_cases():
            if case.status == CaseStatus.CANCELLED:
                continue
            for installment in self.schedule_manager.get_schedule(case.id):
                if installment.due_date >= as_of:
                    continue
                if installment.status not in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL,
                                              InstallmentStatus.OVERDUE):
                    continue
                outstanding = installment.amount_due - installment.paid_amount
                result.append({
                    "case_id": case.id,
                    "case_number": case.case_number,
                    "installment_id": installment.id,
                    "label": installment.label,
                    "due_date": installment.due_date.isoformat(),
                    "days_overdue": (as_of - installment.due_date).days,
                    "amount_due": str(installment.amount_due.amount),
                    "paid_amount": str(installment.paid_amount.amount),
                    "outstanding": str(outstanding.amount),
                    "status": installment.status.value,
                })
        result.sort(key=lambda row: (row["due_date"], row["case_number"]))
        return result

    def dashboard_stats(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Headline numbers: cases by status, sales value, money collected"""
        as_of = today or self.clock.today()
        stats = self.case_manager.case_stats()

        zero = Money.zero(self.base_currency)
        collected = zero
        refunded = zero
        collected_this_month = zero
        payments = self.payment_recorder.get_all_payments()
        current_month = month_key(as_of)
        for payment in payments:
            if payment.is_refund:
                refunded = refunded + payment.amount
                continue
            collected = collected + payment.amount
            if payment.payment_month == current_month:
                collected_this_month = collected_this_month + payment.amount

        return {
            "total_cases": stats["total"],
            "cases_by_status": stats["by_status"],
            "total_sales_value": stats["open_sale_value"],
            "total_collected": str(collected.amount),
            "total_refunded": str(refunded.amount),
            "net_collected": str((collected - refunded).amount),
            "collected_this_month": str(collected_this_month.amount),
            "payment_count": len(payments),
            "overdue_installment_count": len(self.overdue_installments(as_of)),
        }

    def export_report(self, result: ReportResult, format: ReportFormat) -> Union[Dict, str]:
        """
        Export report result in specified format
        """
        if format == ReportFormat.DICT:
            return {
                'report_id': result.report_id,
                'generated_at': result.generated_at.isoformat(),
                'as_of': result.as_of.isoformat(),
                'data': result.data,
                'totals': result.totals,
                'metadata': result.metadata
            }

        elif format == ReportFormat.JSON:
            return json.dumps(self.export_report(result, ReportFormat.DICT), indent=2, default=str)

        elif format == ReportFormat.CSV:
            return self.export_csv(result)

        else:
            raise ValueError(f"Unsupported export format: {format}")

    def export_csv(self, result: ReportResult) -> str:
        output = io.StringIO()
        if result.data:
            writer = csv.DictWriter(output, fieldnames=list(result.data[0].keys()))
            writer.writeheader()
            for row in result.data:
                writer.writerow(row)
        content = output.getvalue()
        output.close()
        return content
