"""
Unit inventory endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .deps import get_system
from .schemas import CreateUnitRequest, BlockUnitRequest, parse_enum, unit_response
from ..system import CaseManagementSystem
from ..inventory import UnitStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_unit(
    request: CreateUnitRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    """Add a lot to inventory"""
    unit = system.unit_manager.create_unit(
        block=request.block,
        lot=request.lot,
        area_m2=request.area_m2,
        list_price=request.list_price or None,
        phase=request.phase,
        notes=request.notes
    )
    return unit_response(unit)


@router.get("")
async def list_units(
    status: Optional[str] = None,
    block: Optional[str] = None,
    system: CaseManagementSystem = Depends(get_system)
):
    """List units, optionally by status or block"""
    unit_status = parse_enum(UnitStatus, status, "status") if status else None
    units = system.unit_manager.list_units(status=unit_status, block=block)
    return {"units": [unit_response(u) for u in units], "count": len(units)}


@router.get("/{unit_id}")
async def get_unit(unit_id: str, system: CaseManagementSystem = Depends(get_system)):
    return unit_response(system.unit_manager.require_unit(unit_id))


@router.post("/{unit_id}/block")
async def block_unit(
    unit_id: str,
    request: BlockUnitRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    """Take a unit off the market"""
    return unit_response(system.unit_manager.block_unit(unit_id, request.reason))


@router.post("/{unit_id}/unblock")
async def unblock_unit(unit_id: str, system: CaseManagementSystem = Depends(get_system)):
    return unit_response(system.unit_manager.unblock_unit(unit_id))
