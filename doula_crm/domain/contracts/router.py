"""Contract router - FastAPI endpoints for contract operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import AuthenticatedUser, get_current_user, require_admin
from ...database import get_db
from .schemas import ContractCreate, ContractSignedRequest
from .service import ContractService, to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contracts", tags=["Contracts"])


def get_contract_service(db: Session = Depends(get_db)) -> ContractService:
    """Dependency injection for ContractService"""
    return ContractService(db)


@router.get("")
async def get_contracts(
    client_id: Optional[int] = Query(None, description="Filter contracts by client ID"),
    status: Optional[str] = Query(None, description="Filter contracts by status"),
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    contracts = service.get_contracts(client_id, status)
    return {"success": True, "data": [to_response(c).model_dump(mode="json") for c in contracts]}


@router.post("", status_code=201)
async def create_contract(
    data: ContractCreate,
    current_user: AuthenticatedUser = Depends(require_admin),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.create_contract(data)
    return {"success": True, "data": to_response(contract).model_dump(mode="json")}


@router.get("/{contract_id}")
async def get_contract(
    contract_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.get_contract(contract_id)
    return {"success": True, "data": to_response(contract).model_dump(mode="json")}


@router.post("/{contract_id}/sent")
async def mark_contract_sent(
    contract_id: int,
    current_user: AuthenticatedUser = Depends(require_admin),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.mark_sent(contract_id)
    return {"success": True, "data": to_response(contract).model_dump(mode="json")}


@router.post("/{contract_id}/signed")
async def mark_contract_signed(
    contract_id: int,
    data: Optional[ContractSignedRequest] = None,
    current_user: AuthenticatedUser = Depends(require_admin),
    service: ContractService = Depends(get_contract_service),
):
    """Record that the client completed the e-signature"""
    contract = service.mark_signed(contract_id, data.signedAt if data else None)
    return {"success": True, "data": to_response(contract).model_dump(mode="json")}
