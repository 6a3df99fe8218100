"""Payments repository - Database operations for schedules, payments and reminders"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Query, Session, joinedload

from ...models import Client, Contract
from ...models_payments import ContractPayment, PaymentReminder, PaymentSchedule


class PaymentRepository:
    """Repository for payment database operations"""

    @staticmethod
    def get_contract(db: Session, contract_id: int) -> Optional[Contract]:
        return (
            db.query(Contract)
            .options(joinedload(Contract.client))
            .filter(Contract.id == contract_id)
            .first()
        )

    @staticmethod
    def get_payment(db: Session, payment_id: int) -> Optional[ContractPayment]:
        return db.query(ContractPayment).filter(ContractPayment.id == payment_id).first()

    @staticmethod
    def add_schedule(
        db: Session, schedule: PaymentSchedule, payments: list[ContractPayment]
    ) -> PaymentSchedule:
        """Stage a schedule and its payments. The caller owns the commit."""
        db.add(schedule)
        db.flush()
        for payment in payments:
            payment.payment_schedule_id = schedule.id
            db.add(payment)
        db.flush()
        return schedule

    @staticmethod
    def get_schedules_for_contract(db: Session, contract_id: int) -> list[PaymentSchedule]:
        """Most recent first"""
        return (
            db.query(PaymentSchedule)
            .filter(PaymentSchedule.contract_id == contract_id)
            .order_by(PaymentSchedule.created_at.desc(), PaymentSchedule.id.desc())
            .all()
        )

    @staticmethod
    def get_active_schedules(db: Session) -> list[PaymentSchedule]:
        return db.query(PaymentSchedule).filter(PaymentSchedule.status == "active").all()

    @staticmethod
    def get_active_schedule_for_contract(db: Session, contract_id: int) -> Optional[PaymentSchedule]:
        return (
            db.query(PaymentSchedule)
            .filter(PaymentSchedule.contract_id == contract_id, PaymentSchedule.status == "active")
            .first()
        )

    @staticmethod
    def get_contract_payments(db: Session, contract_id: int) -> list[ContractPayment]:
        return (
            db.query(ContractPayment)
            .filter(ContractPayment.contract_id == contract_id)
            .order_by(ContractPayment.due_date.asc(), ContractPayment.payment_number.asc())
            .all()
        )

    @staticmethod
    def get_all_payments(db: Session) -> list[ContractPayment]:
        return db.query(ContractPayment).all()

    @staticmethod
    def payments_with_contract(db: Session) -> Query:
        """Payments joined to contract and client, ordered by due date ascending"""
        return (
            db.query(ContractPayment)
            .join(Contract, ContractPayment.contract_id == Contract.id)
            .join(Client, Contract.client_id == Client.id)
            .options(
                joinedload(ContractPayment.contract).joinedload(Contract.client),
                joinedload(ContractPayment.payment_schedule),
            )
            .order_by(ContractPayment.due_date.asc(), ContractPayment.id.asc())
        )

    @staticmethod
    def get_payments_by_status(db: Session, status: str) -> list[ContractPayment]:
        return (
            PaymentRepository.payments_with_contract(db)
            .filter(ContractPayment.status == status)
            .all()
        )

    @staticmethod
    def get_outstanding_payments_due_between(
        db: Session, statuses: list[str], start_date: date, end_date: date
    ) -> list[ContractPayment]:
        return (
            PaymentRepository.payments_with_contract(db)
            .filter(
                ContractPayment.status.in_(statuses),
                ContractPayment.due_date >= start_date,
                ContractPayment.due_date <= end_date,
            )
            .all()
        )

    @staticmethod
    def get_outstanding_payments_due_before(
        db: Session, statuses: list[str], before: date
    ) -> list[ContractPayment]:
        return (
            PaymentRepository.payments_with_contract(db)
            .filter(ContractPayment.status.in_(statuses), ContractPayment.due_date < before)
            .all()
        )

    @staticmethod
    def get_next_outstanding_payment(
        db: Session, contract_id: int, statuses: list[str]
    ) -> Optional[ContractPayment]:
        return (
            db.query(ContractPayment)
            .filter(
                ContractPayment.contract_id == contract_id,
                ContractPayment.status.in_(statuses),
            )
            .order_by(ContractPayment.due_date.asc(), ContractPayment.payment_number.asc())
            .first()
        )

    @staticmethod
    def get_contracts_with_payments(db: Session) -> list[Contract]:
        return (
            db.query(Contract)
            .options(joinedload(Contract.client))
            .filter(Contract.payments.any())
            .all()
        )

    # Reminders

    @staticmethod
    def get_reminder(db: Session, reminder_id: int) -> Optional[PaymentReminder]:
        return db.query(PaymentReminder).filter(PaymentReminder.id == reminder_id).first()

    @staticmethod
    def get_pending_reminders(db: Session, now: datetime) -> list[PaymentReminder]:
        return (
            db.query(PaymentReminder)
            .filter(PaymentReminder.status == "pending", PaymentReminder.scheduled_for <= now)
            .order_by(PaymentReminder.scheduled_for.asc())
            .all()
        )
