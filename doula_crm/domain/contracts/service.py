"""Contract service - Business logic for contract operations"""

import html
import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...database import utcnow
from ...models import Contract
from ..payments.service import PaymentService
from .repository import ContractRepository
from .schemas import ContractCreate, ContractResponse

logger = logging.getLogger(__name__)

# Statuses from which an e-signature completion is accepted
SIGNABLE_STATUSES = ("draft", "sent")


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """Escape HTML special characters in user-supplied text"""
    if value is None:
        return None
    return html.escape(value.strip(), quote=True)


def to_response(contract: Contract) -> ContractResponse:
    client = contract.client
    return ContractResponse(
        id=contract.id,
        public_id=contract.public_id,
        clientId=contract.client_id,
        clientName=client.full_name if client else "Unknown",
        clientEmail=client.email if client else None,
        title=contract.title,
        totalAmount=float(contract.total_amount),
        depositAmount=float(contract.deposit_amount or 0),
        status=contract.status,
        signedAt=contract.signed_at,
        createdAt=contract.created_at,
    )


class ContractService:
    """Service layer for contract business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ContractRepository()

    def get_contracts(
        self, client_id: Optional[int] = None, status: Optional[str] = None
    ) -> list[Contract]:
        return self.repo.get_contracts(self.db, client_id, status)

    def get_contract(self, contract_id: int) -> Contract:
        contract = self.repo.get_contract_by_id(self.db, contract_id)
        if not contract:
            raise HTTPException(status_code=404, detail="Contract not found")
        return contract

    def create_contract(self, data: ContractCreate) -> Contract:
        """Create a draft contract for an existing client or a new one"""
        try:
            if data.clientId:
                client = self.repo.get_client_by_id(self.db, data.clientId)
                if not client:
                    raise HTTPException(status_code=404, detail="Client not found")
            else:
                client = None
                if data.client.email:
                    client = self.repo.get_client_by_email(self.db, data.client.email)
                if not client:
                    client = self.repo.create_client(
                        self.db,
                        first_name=sanitize_string(data.client.firstName),
                        last_name=sanitize_string(data.client.lastName),
                        email=data.client.email,
                        phone=data.client.phone,
                    )
                    logger.info(f"🆕 Client {client.id} created for {data.client.email}")

            logger.info(f"📝 Creating contract for client_id: {client.id}")
            contract = self.repo.create_contract(
                self.db,
                client_id=client.id,
                title=sanitize_string(data.title),
                total_amount=data.totalAmount,
                deposit_amount=data.depositAmount,
                status="draft",
            )
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Error creating contract: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Failed to create contract: {str(e)}") from e

        if data.paymentSchedule:
            self._create_initial_schedule(contract.id, data)

        return self.get_contract(contract.id)

    def _create_initial_schedule(self, contract_id: int, data: ContractCreate) -> None:
        """A schedule that cannot be built is logged; the contract is kept either way"""
        try:
            schedule_id = PaymentService(self.db).create_payment_schedule(contract_id, data.paymentSchedule)
            logger.info(f"📅 Payment schedule {schedule_id} created with contract {contract_id}")
        except HTTPException as e:
            logger.error(f"❌ Payment schedule for contract {contract_id} not created: {e.detail}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Payment schedule for contract {contract_id} not created: {str(e)}")

    def mark_sent(self, contract_id: int) -> Contract:
        contract = self.get_contract(contract_id)
        if contract.status != "draft":
            raise HTTPException(
                status_code=409, detail=f"Only draft contracts can be sent (status: {contract.status})"
            )
        return self.repo.update_contract(self.db, contract, status="sent")

    def mark_signed(self, contract_id: int, signed_at: Optional[datetime] = None) -> Contract:
        """Record e-signature completion. Repeated callbacks for a signed contract are no-ops."""
        contract = self.get_contract(contract_id)

        if contract.status == "signed":
            logger.info(f"ℹ️ Contract {contract_id} already signed")
            return contract
        if contract.status not in SIGNABLE_STATUSES:
            raise HTTPException(
                status_code=409, detail=f"Contract cannot be signed from status {contract.status}"
            )

        contract = self.repo.update_contract(
            self.db, contract, status="signed", signed_at=signed_at or utcnow()
        )
        logger.info(f"✍️ Contract {contract_id} signed")
        return contract
