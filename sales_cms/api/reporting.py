"""
Reporting endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from .deps import get_system
from .schemas import parse_enum, parse_optional_date
from ..system import CaseManagementSystem
from ..cases import CaseStatus
from ..reporting import FinanceReportFilters, ReportFormat


router = APIRouter()


@router.get("/finance")
async def finance_report(
    status: Optional[str] = None,
    block: Optional[str] = None,
    broker_id: Optional[str] = None,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    as_of: Optional[str] = None,
    format: str = "dict",
    system: CaseManagementSystem = Depends(get_system)
):
    """Per-case finance rows with portfolio totals"""
    filters = FinanceReportFilters(
        status=parse_enum(CaseStatus, status, "status") if status else None,
        block=block,
        broker_id=broker_id,
        from_date=parse_optional_date(from_date, "from_date"),
        to_date=parse_optional_date(to_date, "to_date")
    )
    report_format = parse_enum(ReportFormat, format, "format")
    result = system.reporter.finance_report(filters, parse_optional_date(as_of, "as_of"))

    if report_format == ReportFormat.CSV:
        return PlainTextResponse(
            system.reporter.export_csv(result),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename=finance_{result.as_of.isoformat()}.csv"}
        )
    return system.reporter.export_report(result, ReportFormat.DICT)


@router.get("/overdue")
async def overdue_installments(
    as_of: Optional[str] = None,
    system: CaseManagementSystem = Depends(get_system)
):
    """Open installments past their due date, oldest first"""
    rows = system.reporter.overdue_installments(parse_optional_date(as_of, "as_of"))
    return {"installments": rows, "count": len(rows)}


@router.get("/dashboard")
async def dashboard(
    as_of: Optional[str] = None,
    system: CaseManagementSystem = Depends(get_system)
):
    return system.reporter.dashboard_stats(parse_optional_date(as_of, "as_of"))


@router.get("/audit/verify")
async def verify_audit_chain(system: CaseManagementSystem = Depends(get_system)):
    """Recompute the audit hash chain"""
    return system.audit_trail.verify_integrity()
