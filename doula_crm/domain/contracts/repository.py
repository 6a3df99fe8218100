"""Contract repository - Database operations for contracts"""

from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import Client, Contract


class ContractRepository:
    """Repository for contract database operations"""

    @staticmethod
    def get_contracts(
        db: Session, client_id: Optional[int] = None, status: Optional[str] = None
    ) -> list[Contract]:
        """Get all contracts with optional filters, newest first"""
        query = db.query(Contract).options(joinedload(Contract.client))

        if client_id:
            query = query.filter(Contract.client_id == client_id)
        if status:
            query = query.filter(Contract.status == status)

        return query.order_by(Contract.created_at.desc(), Contract.id.desc()).all()

    @staticmethod
    def get_contract_by_id(db: Session, contract_id: int) -> Optional[Contract]:
        return (
            db.query(Contract)
            .options(joinedload(Contract.client))
            .filter(Contract.id == contract_id)
            .first()
        )

    @staticmethod
    def get_client_by_id(db: Session, client_id: int) -> Optional[Client]:
        return db.query(Client).filter(Client.id == client_id).first()

    @staticmethod
    def get_client_by_email(db: Session, email: str) -> Optional[Client]:
        return db.query(Client).filter(Client.email == email).first()

    @staticmethod
    def create_client(db: Session, **client_data) -> Client:
        """Stage a new client. The caller commits together with the contract."""
        client = Client(**client_data)
        db.add(client)
        db.flush()
        return client

    @staticmethod
    def create_contract(db: Session, **contract_data) -> Contract:
        contract = Contract(**contract_data)
        db.add(contract)
        db.commit()
        db.refresh(contract)
        return contract

    @staticmethod
    def update_contract(db: Session, contract: Contract, **updates) -> Contract:
        """Update a contract with provided fields"""
        for key, value in updates.items():
            if value is not None and hasattr(contract, key):
                setattr(contract, key, value)

        db.commit()
        db.refresh(contract)
        return contract
