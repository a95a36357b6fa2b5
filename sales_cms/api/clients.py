"""
Client and broker endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .deps import get_system
from .schemas import (
    CreateClientRequest, UpdateClientRequest, CreateBrokerRequest,
    client_response, broker_response
)
from ..system import CaseManagementSystem
from ..currency import to_decimal


router = APIRouter()


@router.post("/clients", status_code=status.HTTP_201_CREATED)
async def create_client(
    request: CreateClientRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    """Create a new buyer"""
    details = request.model_dump(exclude_none=True)
    client = system.client_manager.create_client(**details)
    return client_response(client)


@router.get("/clients")
async def list_clients(
    search: Optional[str] = None,
    system: CaseManagementSystem = Depends(get_system)
):
    clients = system.client_manager.list_clients(search)
    return {"clients": [client_response(c) for c in clients], "count": len(clients)}


@router.get("/clients/{client_id}")
async def get_client(client_id: str, system: CaseManagementSystem = Depends(get_system)):
    return client_response(system.client_manager.require_client(client_id))


@router.patch("/clients/{client_id}")
async def update_client(
    client_id: str,
    request: UpdateClientRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    """Update buyer contact details; omitted fields are left alone"""
    changes = request.model_dump(exclude_unset=True)
    return client_response(system.client_manager.update_client(client_id, **changes))


@router.delete("/clients/{client_id}")
async def delete_client(client_id: str, system: CaseManagementSystem = Depends(get_system)):
    """Delete a buyer that has no cases"""
    system.client_manager.delete_client(client_id)
    return {"client_id": client_id, "message": "Client deleted"}


@router.post("/brokers", status_code=status.HTTP_201_CREATED)
async def create_broker(
    request: CreateBrokerRequest,
    system: CaseManagementSystem = Depends(get_system)
):
    broker = system.broker_manager.create_broker(
        full_name=request.full_name,
        agency=request.agency,
        email=request.email,
        phone=request.phone,
        default_commission_pct=to_decimal(request.default_commission_pct)
    )
    return broker_response(broker)


@router.get("/brokers")
async def list_brokers(
    active_only: bool = True,
    system: CaseManagementSystem = Depends(get_system)
):
    brokers = system.broker_manager.list_brokers(active_only=active_only)
    return {"brokers": [broker_response(b) for b in brokers], "count": len(brokers)}
