"""Stripe payments router - payment intents for contract payments and the Stripe webhook"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ... import config
from ...database import get_db
from ...task_queue import JobQueue, get_job_queue
from ...webhook_security import WebhookSignatureError, verify_stripe_signature
from .reconciliation import PaymentReconciler
from .schemas import PaymentResponse, RecordPaymentRequest
from .service import PaymentService
from .stripe_service import StripePaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe-payments", tags=["Stripe Payments"])


def get_stripe_service(db: Session = Depends(get_db)) -> StripePaymentService:
    return StripePaymentService(db)


def get_reconciler(
    db: Session = Depends(get_db), job_queue: JobQueue = Depends(get_job_queue)
) -> PaymentReconciler:
    return PaymentReconciler(db, job_queue)


@router.post("/contract/{contract_id}/create-payment")
async def create_payment(
    contract_id: int, service: StripePaymentService = Depends(get_stripe_service)
):
    """Create a payment intent for the contract's next due payment"""
    return {"success": True, "data": await service.create_next_payment_intent(contract_id)}


@router.post("/contract/{contract_id}/payment/{payment_id}/create")
async def create_payment_for_installment(
    contract_id: int, payment_id: int, service: StripePaymentService = Depends(get_stripe_service)
):
    """Create a payment intent for a specific payment of the contract"""
    return {"success": True, "data": await service.create_intent_for_payment(contract_id, payment_id)}


@router.get("/contract/{contract_id}/next-payment")
async def get_next_payment(
    contract_id: int, service: StripePaymentService = Depends(get_stripe_service)
):
    payment = service.get_next_payment(contract_id)
    data = PaymentResponse.model_validate(payment).model_dump(mode="json") if payment else None
    return {"success": True, "data": data}


@router.get("/contract/{contract_id}/payment-summary")
async def get_payment_summary(contract_id: int, db: Session = Depends(get_db)):
    summary = PaymentService(db).get_payment_summary(contract_id)
    return {"success": True, "data": summary.model_dump(mode="json")}


@router.get("/payment-intent/{payment_intent_id}/status")
async def get_payment_intent_status(
    payment_intent_id: str, service: StripePaymentService = Depends(get_stripe_service)
):
    return {"success": True, "data": await service.get_payment_intent_status(payment_intent_id)}


@router.post("/payment-intent/{payment_intent_id}/confirm")
async def confirm_payment(
    payment_intent_id: str,
    service: StripePaymentService = Depends(get_stripe_service),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """
    Report the intent outcome once the frontend finishes checkout.
    A fresh intent also sits in requires_payment_method, so a failure is only recorded
    when Stripe attached a last_payment_error.
    """
    intent = await service.retrieve_payment_intent(payment_intent_id)
    if intent["status"] == "succeeded":
        await reconciler.handle_payment_succeeded(intent)
        status = "succeeded"
    elif intent["status"] == "requires_payment_method":
        if intent.get("last_payment_error"):
            await reconciler.handle_payment_failed(intent)
        status = "failed"
    else:
        status = "processing"

    return {"success": True, "data": {"payment_intent_id": payment_intent_id, "status": status}}


@router.post("/record-payment")
async def record_payment(
    data: RecordPaymentRequest,
    service: StripePaymentService = Depends(get_stripe_service),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Record a succeeded intent without waiting for the webhook"""
    if not data.payment_intent_id:
        raise HTTPException(status_code=400, detail="Payment intent ID is required")

    intent = await service.retrieve_payment_intent(data.payment_intent_id)
    if intent["status"] != "succeeded":
        raise HTTPException(status_code=400, detail="Payment has not succeeded")

    payment = await reconciler.handle_payment_succeeded(intent)
    if payment is None:
        raise HTTPException(status_code=404, detail="No payment found for this payment intent")

    return {"success": True, "data": PaymentResponse.model_validate(payment).model_dump(mode="json")}


@router.post("/webhook")
async def stripe_webhook(request: Request, reconciler: PaymentReconciler = Depends(get_reconciler)):
    """
    Stripe webhook.
    400 on a bad signature, 200 once accepted (unhandled types and replays included),
    500 when processing fails so Stripe redelivers.
    """
    if not config.STRIPE_WEBHOOK_SECRET:
        logger.error("❌ STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = verify_stripe_signature(payload, signature, config.STRIPE_WEBHOOK_SECRET)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info(f"📨 Stripe webhook received: {event['type']} ({event['id']})")

    try:
        outcome = await reconciler.handle_payment_webhook(event)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail="Webhook processing failed") from e

    return {"success": True, "data": {"received": True, "result": outcome}}
