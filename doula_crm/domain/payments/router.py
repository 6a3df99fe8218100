"""Payments router - FastAPI endpoints for schedules, payment status and maintenance"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import AuthenticatedUser, get_current_user, require_admin
from ...database import get_db
from .schemas import (
    CreatePaymentScheduleRequest,
    CreateReminderRequest,
    ManualPaymentRequest,
    MarkReminderSentRequest,
    PaymentReminderResponse,
    PaymentResponse,
    PaymentScheduleResponse,
    UpdatePaymentStatusRequest,
)
from .service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db)


def ok(data) -> dict:
    return {"success": True, "data": data}


# ============================================================================
# DASHBOARD AND LISTINGS
# ============================================================================


@router.get("/dashboard")
async def get_payment_dashboard(
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Per-contract payment totals, ordered by next payment due"""
    return ok([row.model_dump(mode="json") for row in service.get_payment_dashboard()])


@router.get("/overdue")
async def get_overdue_payments(
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return ok([item.model_dump(mode="json") for item in service.get_overdue_payments()])


@router.get("/upcoming")
async def get_upcoming_payments(
    days_ahead: int = Query(7, ge=0, le=365),
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return ok([item.model_dump(mode="json") for item in service.get_upcoming_payments(days_ahead)])


@router.get("/status/{status}")
async def get_payments_by_status(
    status: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return ok([item.model_dump(mode="json") for item in service.get_payments_by_status(status)])


@router.get("/due-between")
async def get_payments_due_between(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Pending or failed payments due within the inclusive date range"""
    if not start_date or not end_date:
        raise HTTPException(status_code=400, detail="start_date and end_date are required")
    items = service.get_payments_due_between(start_date, end_date)
    return ok([item.model_dump(mode="json") for item in items])


# ============================================================================
# CONTRACT PAYMENTS
# ============================================================================


@router.get("/contract/{contract_id}/summary")
async def get_payment_summary(
    contract_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return ok(service.get_payment_summary(contract_id).model_dump(mode="json"))


@router.get("/contract/{contract_id}/schedule")
async def get_payment_schedule(
    contract_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    schedules = service.get_payment_schedule(contract_id)
    return ok([PaymentScheduleResponse.model_validate(s).model_dump(mode="json") for s in schedules])


@router.get("/contract/{contract_id}/history")
async def get_payment_history(
    contract_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payments = service.get_contract_payments(contract_id)
    return ok([PaymentResponse.model_validate(p).model_dump(mode="json") for p in payments])


@router.post("/contract/{contract_id}/schedule", status_code=201)
async def create_payment_schedule(
    contract_id: int,
    data: CreatePaymentScheduleRequest,
    current_user: AuthenticatedUser = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    schedule_id = service.create_payment_schedule(contract_id, data)
    payments = service.get_contract_payments(contract_id)
    return ok(
        {
            "schedule_id": schedule_id,
            "payments": [
                PaymentResponse.model_validate(p).model_dump(mode="json")
                for p in payments
                if p.payment_schedule_id == schedule_id
            ],
        }
    )


@router.post("/contract/{contract_id}/manual", status_code=201)
async def create_manual_payment(
    contract_id: int,
    data: ManualPaymentRequest,
    current_user: AuthenticatedUser = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    payment = service.create_manual_payment(contract_id, data)
    return ok(PaymentResponse.model_validate(payment).model_dump(mode="json"))


@router.put("/payment/{payment_id}/status")
async def update_payment_status(
    payment_id: int,
    data: UpdatePaymentStatusRequest,
    current_user: AuthenticatedUser = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    if not data.status:
        raise HTTPException(status_code=400, detail="Status is required")

    payment = service.update_payment_status(
        payment_id, data.status, data.stripe_payment_intent_id, data.notes
    )
    if payment.status == "succeeded":
        service.check_and_update_contract_status(payment.contract_id)
    return ok(PaymentResponse.model_validate(payment).model_dump(mode="json"))


# ============================================================================
# MAINTENANCE
# ============================================================================


@router.post("/maintenance/daily")
async def run_daily_maintenance(
    current_user: AuthenticatedUser = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    logger.info(f"🔧 Daily maintenance triggered manually by {current_user.email}")
    return ok(service.run_daily_maintenance())


@router.post("/maintenance/overdue-flags")
async def update_overdue_flags(
    current_user: AuthenticatedUser = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    return ok({"updated": service.update_overdue_flags()})


# ============================================================================
# REMINDERS
# ============================================================================


@router.post("/payment/{payment_id}/reminders", status_code=201)
async def create_payment_reminder(
    payment_id: int,
    data: CreateReminderRequest,
    current_user: AuthenticatedUser = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    reminder = service.create_payment_reminder(payment_id, data.reminder_type, data.scheduled_for)
    return ok(PaymentReminderResponse.model_validate(reminder).model_dump(mode="json"))


@router.get("/reminders/pending")
async def get_pending_reminders(
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    reminders = service.get_pending_reminders()
    return ok([PaymentReminderResponse.model_validate(r).model_dump(mode="json") for r in reminders])


@router.post("/reminders/{reminder_id}/sent")
async def mark_reminder_sent(
    reminder_id: int,
    data: Optional[MarkReminderSentRequest] = None,
    current_user: AuthenticatedUser = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    data = data or MarkReminderSentRequest()
    reminder = service.mark_reminder_sent(reminder_id, data.email_sent, data.sms_sent)
    return ok(PaymentReminderResponse.model_validate(reminder).model_dump(mode="json"))
