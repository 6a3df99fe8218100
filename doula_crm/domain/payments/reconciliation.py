"""
Stripe reconciliation

Maps Stripe payment_intent events onto contract payments. Every event id is recorded in
the stripe_webhook_events ledger before it is applied, so a redelivered event is
acknowledged without touching payment state again.
"""

import logging
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...database import utcnow
from ...models import Charge, Customer
from ...models_payments import ContractPayment, StripeWebhookEvent
from ...task_queue import JobQueue
from .lifecycle import InvalidPaymentTransition, PaymentStatus
from .schedule import to_cents
from .service import PaymentService, apply_status

logger = logging.getLogger(__name__)

LEGACY_CHARGE_TASK = "record_legacy_charge_task"


def legacy_charge_job_id(payment_intent_id: str) -> str:
    return f"legacy-charge:{payment_intent_id}"


def record_legacy_charge(db: Session, payment: ContractPayment, payment_intent_id: str) -> Charge:
    """
    Mirror a succeeded payment into the legacy customers/charges tables.
    Returns the existing charge when the intent was already recorded.
    """
    existing = db.query(Charge).filter(Charge.stripe_payment_intent_id == payment_intent_id).first()
    if existing:
        logger.info(f"ℹ️ Charge for {payment_intent_id} already recorded (id={existing.id})")
        return existing

    client = payment.contract.client if payment.contract else None
    customer = None
    if client and client.email:
        customer = db.query(Customer).filter(Customer.email == client.email).first()
        if not customer:
            customer = Customer(email=client.email, name=client.full_name)
            db.add(customer)
            db.flush()

    charge = Charge(
        customer_id=customer.id if customer else None,
        stripe_payment_intent_id=payment_intent_id,
        amount=to_cents(payment.amount),
        status="succeeded",
        description=f"Contract {payment.contract_id} {payment.payment_type} payment "
        f"{payment.payment_number}/{payment.total_payments}",
        contract_payment_id=payment.id,
        qb_sync_status="pending",
    )
    db.add(charge)
    db.commit()
    db.refresh(charge)
    logger.info(f"✅ Legacy charge {charge.id} recorded for {payment_intent_id}")
    return charge


class PaymentReconciler:
    """Applies Stripe payment intent outcomes to contract payments"""

    def __init__(self, db: Session, job_queue: JobQueue):
        self.db = db
        self.jobs = job_queue
        self.payments = PaymentService(db)

    # ------------------------------------------------------------------
    # Webhook entry point
    # ------------------------------------------------------------------

    async def handle_payment_webhook(self, event: dict) -> str:
        """
        Process a verified Stripe event.

        Returns "processed", "ignored" (unhandled event type) or "duplicate".
        Handler exceptions are recorded on the ledger row and re-raised.
        """
        event_id = event["id"]
        event_type = event["type"]

        ledger = self._claim_event(event_id, event_type)
        if ledger is None:
            logger.info(f"🔁 Stripe event {event_id} ({event_type}) already processed, skipping")
            return "duplicate"

        handlers = {
            "payment_intent.succeeded": self.handle_payment_succeeded,
            "payment_intent.payment_failed": self.handle_payment_failed,
            "payment_intent.canceled": self.handle_payment_canceled,
        }
        handler = handlers.get(event_type)

        try:
            if handler:
                intent = event.get("data", {}).get("object", {}) or {}
                await handler(intent)
                outcome = "processed"
            else:
                logger.info(f"ℹ️ Unhandled Stripe event type: {event_type}")
                outcome = "ignored"
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Stripe event {event_id} ({event_type}) failed: {str(e)}")
            ledger.ok = False
            ledger.error = str(e)[:2000]
            self.db.commit()
            raise

        ledger.processed_at = utcnow()
        ledger.ok = True
        ledger.error = None
        self.db.commit()
        return outcome

    def _claim_event(self, event_id: str, event_type: str) -> Optional[StripeWebhookEvent]:
        """Insert the ledger row for event_id. Returns None when the event was already handled."""
        ledger = (
            self.db.query(StripeWebhookEvent)
            .filter(StripeWebhookEvent.stripe_event_id == event_id)
            .first()
        )
        if ledger:
            # A row without processed_at is a previous failed attempt, so retry it
            return None if ledger.processed_at else ledger

        ledger = StripeWebhookEvent(stripe_event_id=event_id, event_type=event_type)
        self.db.add(ledger)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the insert race to a concurrent delivery of the same event
            self.db.rollback()
            return None
        return ledger

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _payment_from_intent(self, intent: Any) -> Optional[ContractPayment]:
        metadata = intent.get("metadata") or {}
        contract_id = metadata.get("contract_id")
        payment_id = metadata.get("payment_id")
        intent_id = intent.get("id")

        if not contract_id or not payment_id:
            logger.warning(f"⚠️ Payment intent {intent_id} missing contract_id/payment_id metadata")
            return None

        try:
            contract_id, payment_id = int(contract_id), int(payment_id)
        except (TypeError, ValueError):
            logger.warning(f"⚠️ Payment intent {intent_id} has malformed metadata: {dict(metadata)}")
            return None

        payment = self.payments.repo.get_payment(self.db, payment_id)
        if not payment or payment.contract_id != contract_id:
            logger.warning(
                f"⚠️ Payment intent {intent_id} references unknown payment {payment_id} "
                f"on contract {contract_id}"
            )
            return None
        return payment

    def _transition(
        self, payment: ContractPayment, status: PaymentStatus, intent_id: str, notes: Optional[str] = None
    ) -> bool:
        try:
            apply_status(payment, status, stripe_payment_intent_id=intent_id, notes=notes)
        except InvalidPaymentTransition as e:
            self.db.rollback()
            logger.warning(f"⚠️ Ignoring {status.value} for payment {payment.id}: {e}")
            return False
        self.payments.save("update payment status")
        logger.info(f"💳 Payment {payment.id} marked {status.value} from intent {intent_id}")
        return True

    async def handle_payment_succeeded(self, intent: Any) -> Optional[ContractPayment]:
        payment = self._payment_from_intent(intent)
        if payment is None:
            return None

        intent_id = intent.get("id")
        if payment.status == PaymentStatus.SUCCEEDED.value:
            logger.info(f"ℹ️ Payment {payment.id} already succeeded, nothing to apply")
            return payment

        if not self._transition(payment, PaymentStatus.SUCCEEDED, intent_id):
            return None

        self.payments.check_and_update_contract_status(payment.contract_id)

        # Legacy charge row and QuickBooks sync run on the worker with their own retries
        await self.jobs.enqueue(
            LEGACY_CHARGE_TASK, payment.id, intent_id, job_id=legacy_charge_job_id(intent_id)
        )
        return payment

    async def handle_payment_failed(self, intent: Any) -> Optional[ContractPayment]:
        payment = self._payment_from_intent(intent)
        if payment is None:
            return None

        error = intent.get("last_payment_error") or {}
        notes = "Payment failed via Stripe"
        if error.get("message"):
            notes = f"{notes}: {error['message']}"

        if not self._transition(payment, PaymentStatus.FAILED, intent.get("id"), notes):
            return None
        return payment

    async def handle_payment_canceled(self, intent: Any) -> Optional[ContractPayment]:
        payment = self._payment_from_intent(intent)
        if payment is None:
            return None

        if not self._transition(payment, PaymentStatus.CANCELED, intent.get("id"), "Payment canceled by user"):
            return None
        return payment
