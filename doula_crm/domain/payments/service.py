"""Payment service - Business logic for schedules, payment status and maintenance"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...database import utcnow
from ...models import Contract
from ...models_payments import ContractPayment, PaymentReminder, PaymentSchedule
from .lifecycle import (
    OUTSTANDING_STATUSES,
    InvalidPaymentTransition,
    PaymentStatus,
    ensure_transition,
    is_payment_overdue,
    parse_status,
)
from .repository import PaymentRepository
from .schedule import (
    PaymentScheduleError,
    base_installment_amount,
    build_installment_plan,
    to_money,
)
from .schemas import (
    CreatePaymentScheduleRequest,
    ManualPaymentRequest,
    PaymentDashboardRow,
    PaymentListItem,
    PaymentSummary,
)

logger = logging.getLogger(__name__)

OUTSTANDING = [status.value for status in OUTSTANDING_STATUSES]


def apply_status(
    payment: ContractPayment,
    status: PaymentStatus,
    stripe_payment_intent_id: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ContractPayment:
    """Move a payment to status after checking the transition table. Does not commit."""
    ensure_transition(payment.status, status.value)
    now = now or utcnow()

    payment.status = status.value
    if stripe_payment_intent_id:
        payment.stripe_payment_intent_id = stripe_payment_intent_id
    if notes is not None:
        payment.notes = notes

    if status == PaymentStatus.SUCCEEDED:
        payment.completed_at = now
        payment.is_overdue = False
    elif status == PaymentStatus.FAILED:
        payment.failed_at = now
    elif status == PaymentStatus.REFUNDED:
        payment.refunded_at = now
    elif status == PaymentStatus.CANCELED:
        payment.is_overdue = False

    return payment


def compute_summary(payments: Iterable[ContractPayment], today: Optional[date] = None) -> PaymentSummary:
    """Aggregate a contract's payments. Canceled and refunded payments are neither paid nor due."""
    today = today or date.today()
    total_paid = Decimal("0")
    total_due = Decimal("0")
    overdue_amount = Decimal("0")
    overdue_count = 0
    payment_count = 0
    next_payment: Optional[ContractPayment] = None

    for payment in payments:
        payment_count += 1
        amount = to_money(payment.amount)
        if payment.status == PaymentStatus.SUCCEEDED.value:
            total_paid += amount
        elif payment.status in OUTSTANDING:
            total_due += amount
            if is_payment_overdue(payment.status, payment.due_date, today):
                overdue_amount += amount
                overdue_count += 1
            if next_payment is None or (payment.due_date, payment.payment_number) < (
                next_payment.due_date,
                next_payment.payment_number,
            ):
                next_payment = payment

    return PaymentSummary(
        total_amount=float(total_paid + total_due),
        total_paid=float(total_paid),
        total_due=float(total_due),
        overdue_amount=float(overdue_amount),
        next_payment_due=next_payment.due_date if next_payment else None,
        next_payment_amount=float(next_payment.amount) if next_payment else None,
        payment_count=payment_count,
        overdue_count=overdue_count,
    )


def to_list_item(payment: ContractPayment, today: Optional[date] = None) -> PaymentListItem:
    today = today or date.today()
    contract = payment.contract
    client = contract.client if contract else None
    overdue = is_payment_overdue(payment.status, payment.due_date, today)
    return PaymentListItem(
        payment_id=payment.id,
        contract_id=payment.contract_id,
        client_name=client.full_name if client else "Unknown",
        client_email=client.email if client else None,
        payment_type=payment.payment_type,
        amount=float(payment.amount),
        due_date=payment.due_date,
        status=payment.status,
        is_overdue=payment.is_overdue,
        days_overdue=(today - payment.due_date).days if overdue else 0,
        payment_schedule_name=payment.payment_schedule.schedule_name if payment.payment_schedule else None,
    )


class PaymentService:
    """Service layer for contract payments"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PaymentRepository()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_contract(self, contract_id: int) -> Contract:
        contract = self.repo.get_contract(self.db, contract_id)
        if not contract:
            raise HTTPException(status_code=404, detail="Contract not found")
        return contract

    def get_payment(self, payment_id: int) -> ContractPayment:
        payment = self.repo.get_payment(self.db, payment_id)
        if not payment:
            raise HTTPException(status_code=404, detail="Payment not found")
        return payment

    def save(self, operation: str) -> None:
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to {operation}: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Failed to {operation}: {str(e)}") from e

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def create_payment_schedule(self, contract_id: int, data: CreatePaymentScheduleRequest) -> int:
        """Persist a schedule and all of its payments in one transaction, returning the schedule id"""
        contract = self._get_contract(contract_id)
        if self.repo.get_active_schedule_for_contract(self.db, contract.id):
            raise HTTPException(status_code=409, detail="Contract already has an active payment schedule")
        start_date = data.start_date or date.today()

        logger.info(
            f"📅 Creating payment schedule for contract {contract_id}: total={data.total_amount}, "
            f"deposit={data.deposit_amount}, installments={data.number_of_installments} "
            f"({data.payment_frequency})"
        )

        try:
            plan = build_installment_plan(
                total_amount=data.total_amount,
                deposit_amount=data.deposit_amount,
                number_of_installments=data.number_of_installments,
                payment_frequency=data.payment_frequency,
                start_date=start_date,
            )
        except PaymentScheduleError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        schedule = PaymentSchedule(
            contract_id=contract.id,
            schedule_name=data.schedule_name or f"{contract.title} Payment Plan",
            total_amount=to_money(data.total_amount),
            deposit_amount=to_money(data.deposit_amount),
            installment_amount=base_installment_amount(plan),
            number_of_installments=data.number_of_installments,
            payment_frequency=data.payment_frequency,
            start_date=start_date,
            end_date=max(p.due_date for p in plan),
            status="active",
        )
        payments = [
            ContractPayment(
                contract_id=contract.id,
                payment_type=planned.payment_type,
                amount=planned.amount,
                due_date=planned.due_date,
                payment_number=planned.payment_number,
                total_payments=planned.total_payments,
                status=PaymentStatus.PENDING.value,
                is_overdue=False,
            )
            for planned in plan
        ]

        try:
            self.repo.add_schedule(self.db, schedule, payments)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Error creating payment schedule: {str(e)}")
            raise HTTPException(
                status_code=500, detail=f"Failed to create payment schedule: {str(e)}"
            ) from e

        logger.info(f"✅ Payment schedule {schedule.id} created with {len(payments)} payments")
        return schedule.id

    def get_payment_schedule(self, contract_id: int) -> list[PaymentSchedule]:
        return self.repo.get_schedules_for_contract(self.db, contract_id)

    def get_contract_payments(self, contract_id: int) -> list[ContractPayment]:
        return self.repo.get_contract_payments(self.db, contract_id)

    def get_payment_summary(self, contract_id: int, today: Optional[date] = None) -> PaymentSummary:
        return compute_summary(self.repo.get_contract_payments(self.db, contract_id), today)

    def create_manual_payment(self, contract_id: int, data: ManualPaymentRequest) -> ContractPayment:
        """Admin-entered payment outside of any schedule"""
        contract = self._get_contract(contract_id)
        payment = ContractPayment(
            contract_id=contract.id,
            payment_type=data.payment_type,
            amount=to_money(data.amount),
            due_date=data.due_date or date.today(),
            payment_number=1,
            total_payments=1,
            status=PaymentStatus.PENDING.value,
            is_overdue=False,
            notes=data.notes,
        )
        self.db.add(payment)
        self.save("create manual payment")
        self.db.refresh(payment)
        logger.info(f"💳 Manual payment {payment.id} created for contract {contract_id}")
        return payment

    # ------------------------------------------------------------------
    # Status lifecycle
    # ------------------------------------------------------------------

    def update_payment_status(
        self,
        payment_id: int,
        status: str,
        stripe_payment_intent_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ContractPayment:
        try:
            target = parse_status(status)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        payment = self.get_payment(payment_id)
        previous = payment.status

        try:
            apply_status(payment, target, stripe_payment_intent_id, notes)
        except InvalidPaymentTransition as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

        self.save("update payment status")
        self.db.refresh(payment)
        logger.info(f"💳 Payment {payment_id} status: {previous} → {payment.status}")
        return payment

    def check_and_update_contract_status(self, contract_id: int) -> bool:
        """Flip the contract to active once nothing is due and something was paid"""
        summary = self.get_payment_summary(contract_id)
        if not (summary.total_due == 0 and summary.total_paid > 0):
            return False

        contract = self._get_contract(contract_id)
        if contract.status == "active":
            return False

        contract.status = "active"
        self.save("update contract status")
        logger.info(f"✅ Contract {contract_id} fully paid, status set to active")
        return True

    # ------------------------------------------------------------------
    # Overdue detection and maintenance
    # ------------------------------------------------------------------

    def update_overdue_flags(self, today: Optional[date] = None) -> int:
        """Recompute is_overdue for every payment, returning the number of rows changed"""
        today = today or date.today()
        changed = 0
        for payment in self.repo.get_all_payments(self.db):
            overdue = is_payment_overdue(payment.status, payment.due_date, today)
            if bool(payment.is_overdue) != overdue:
                payment.is_overdue = overdue
                changed += 1

        self.save("update overdue flags")
        logger.info(f"⏰ Overdue flags updated: {changed} payments changed")
        return changed

    def complete_finished_schedules(self) -> int:
        """Mark active schedules completed once nothing is outstanding and something succeeded"""
        completed = 0
        for schedule in self.repo.get_active_schedules(self.db):
            statuses = {payment.status for payment in schedule.payments}
            if statuses & set(OUTSTANDING):
                continue
            if PaymentStatus.SUCCEEDED.value not in statuses:
                continue
            schedule.status = "completed"
            completed += 1

        self.save("update schedule statuses")
        return completed

    def run_daily_maintenance(self, today: Optional[date] = None) -> dict:
        today = today or date.today()
        logger.info(f"🔧 Running daily payment maintenance for {today.isoformat()}")

        overdue_changed = self.update_overdue_flags(today)
        schedules_completed = self.complete_finished_schedules()
        overdue_total = len(
            self.repo.get_outstanding_payments_due_before(self.db, OUTSTANDING, today)
        )

        summary = {
            "run_date": today.isoformat(),
            "overdue_flags_changed": overdue_changed,
            "overdue_payments": overdue_total,
            "schedules_completed": schedules_completed,
        }
        logger.info(f"✅ Daily payment maintenance complete: {summary}")
        return summary

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------

    def get_overdue_payments(self, today: Optional[date] = None) -> list[PaymentListItem]:
        today = today or date.today()
        payments = self.repo.get_outstanding_payments_due_before(self.db, OUTSTANDING, today)
        return [to_list_item(payment, today) for payment in payments]

    def get_upcoming_payments(
        self, days_ahead: int = 7, today: Optional[date] = None
    ) -> list[PaymentListItem]:
        if days_ahead < 0:
            raise HTTPException(status_code=400, detail="days_ahead cannot be negative")
        today = today or date.today()
        payments = self.repo.get_outstanding_payments_due_between(
            self.db, OUTSTANDING, today, today + timedelta(days=days_ahead)
        )
        return [to_list_item(payment, today) for payment in payments]

    def get_payments_by_status(self, status: str) -> list[PaymentListItem]:
        try:
            target = parse_status(status)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return [to_list_item(p) for p in self.repo.get_payments_by_status(self.db, target.value)]

    def get_payments_due_between(self, start_date: date, end_date: date) -> list[PaymentListItem]:
        """Outstanding payments due within [start_date, end_date], ascending by due date"""
        if start_date > end_date:
            raise HTTPException(status_code=400, detail="start_date must be on or before end_date")
        payments = self.repo.get_outstanding_payments_due_between(
            self.db, OUTSTANDING, start_date, end_date
        )
        return [to_list_item(payment) for payment in payments]

    def get_payment_dashboard(self, today: Optional[date] = None) -> list[PaymentDashboardRow]:
        today = today or date.today()
        rows = []
        for contract in self.repo.get_contracts_with_payments(self.db):
            summary = compute_summary(contract.payments, today)
            client = contract.client
            rows.append(
                PaymentDashboardRow(
                    contract_id=contract.id,
                    contract_title=contract.title,
                    contract_status=contract.status,
                    client_name=client.full_name if client else "Unknown",
                    client_email=client.email if client else None,
                    total_amount=summary.total_amount,
                    total_paid=summary.total_paid,
                    total_due=summary.total_due,
                    overdue_amount=summary.overdue_amount,
                    overdue_count=summary.overdue_count,
                    payment_count=summary.payment_count,
                    next_payment_due=summary.next_payment_due,
                    next_payment_amount=summary.next_payment_amount,
                )
            )

        # Contracts with nothing left to collect sort last
        rows.sort(key=lambda row: (row.next_payment_due is None, row.next_payment_due or date.max, row.contract_id))
        return rows

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def create_payment_reminder(
        self, payment_id: int, reminder_type: str, scheduled_for: datetime
    ) -> PaymentReminder:
        payment = self.get_payment(payment_id)
        reminder = PaymentReminder(
            payment_id=payment.id,
            reminder_type=reminder_type,
            scheduled_for=scheduled_for,
            status="pending",
        )
        self.db.add(reminder)
        self.save("create payment reminder")
        self.db.refresh(reminder)
        logger.info(f"⏰ Payment reminder {reminder.id} ({reminder_type}) created for payment {payment_id}")
        return reminder

    def get_pending_reminders(self, now: Optional[datetime] = None) -> list[PaymentReminder]:
        return self.repo.get_pending_reminders(self.db, now or utcnow())

    def mark_reminder_sent(
        self, reminder_id: int, email_sent: bool = True, sms_sent: bool = False
    ) -> PaymentReminder:
        reminder = self.repo.get_reminder(self.db, reminder_id)
        if not reminder:
            raise HTTPException(status_code=404, detail="Reminder not found")

        reminder.status = "sent"
        reminder.sent_at = utcnow()
        reminder.email_sent = email_sent
        reminder.sms_sent = sms_sent
        self.save("mark reminder as sent")
        self.db.refresh(reminder)
        logger.info(f"📧 Reminder {reminder_id} marked as sent")
        return reminder
