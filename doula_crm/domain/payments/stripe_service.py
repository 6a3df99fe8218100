"""Stripe service - Payment intents and customers for contract payments"""

import asyncio
import logging
from typing import Any, Optional

import stripe
from fastapi import HTTPException
from sqlalchemy.orm import Session

from ... import config
from ...models import Contract, Customer
from ...models_payments import ContractPayment
from .lifecycle import OUTSTANDING_STATUSES, InvalidPaymentTransition, PaymentStatus
from .repository import PaymentRepository
from .schedule import to_cents
from .service import PaymentService, apply_status

logger = logging.getLogger(__name__)

# Contracts have to be signed before money is collected
PAYABLE_CONTRACT_STATUSES = ("signed", "active")

# Stripe intent status → status reported to the frontend
INTENT_STATUS_MAP = {
    "succeeded": "succeeded",
    "requires_payment_method": "failed",
    "canceled": "canceled",
}


class StripePaymentService:
    """Creates and inspects Stripe payment intents for contract payments"""

    def __init__(self, db: Session, api_key: Optional[str] = None, currency: Optional[str] = None):
        self.db = db
        self.api_key = api_key or config.STRIPE_SECRET_KEY
        self.currency = currency or config.STRIPE_CURRENCY
        self.repo = PaymentRepository()
        self.payments = PaymentService(db)

    def _ensure_configured(self) -> None:
        if not config.FEATURE_STRIPE:
            raise HTTPException(status_code=503, detail="Stripe payments are disabled")
        if not self.api_key:
            raise HTTPException(status_code=500, detail="Stripe not configured")

    async def _call(self, func, **params) -> Any:
        """Run a blocking Stripe SDK call off the event loop"""
        try:
            return await asyncio.to_thread(func, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            logger.error(f"❌ Stripe API error: {message}")
            raise HTTPException(status_code=502, detail=f"Stripe error: {message}") from e

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def get_or_create_stripe_customer(self, email: str, name: Optional[str] = None) -> str:
        """Return the Stripe customer id for email, creating the Stripe customer once"""
        customer = self.db.query(Customer).filter(Customer.email == email).first()
        if customer and customer.stripe_customer_id:
            return customer.stripe_customer_id

        stripe_customer = await self._call(stripe.Customer.create, email=email, name=name)

        if not customer:
            customer = Customer(email=email, name=name)
            self.db.add(customer)
        customer.stripe_customer_id = stripe_customer["id"]
        self.payments.save("save Stripe customer")
        logger.info(f"👤 Stripe customer {stripe_customer['id']} linked to {email}")
        return customer.stripe_customer_id

    # ------------------------------------------------------------------
    # Payment intents
    # ------------------------------------------------------------------

    async def create_payment_intent(self, contract: Contract, payment: ContractPayment) -> dict:
        """Create a PaymentIntent for one contract payment and attach it to the payment row"""
        self._ensure_configured()

        if payment.status not in {s.value for s in OUTSTANDING_STATUSES}:
            raise HTTPException(
                status_code=400, detail=f"Payment is {payment.status} and cannot be charged"
            )

        customer_id = None
        client = contract.client
        if client and client.email:
            customer_id = await self.get_or_create_stripe_customer(client.email, client.full_name)

        amount_cents = to_cents(payment.amount)
        params = {
            "amount": amount_cents,
            "currency": self.currency,
            "metadata": {
                "contract_id": str(contract.id),
                "payment_id": str(payment.id),
                "payment_type": payment.payment_type,
            },
            "automatic_payment_methods": {"enabled": True},
            "description": f"{contract.title} - {payment.payment_type} "
            f"{payment.payment_number}/{payment.total_payments}",
        }
        if customer_id:
            params["customer"] = customer_id

        intent = await self._call(stripe.PaymentIntent.create, **params)

        # A new attempt on a failed payment puts it back to pending
        try:
            apply_status(payment, PaymentStatus.PENDING, stripe_payment_intent_id=intent["id"])
        except InvalidPaymentTransition as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        self.payments.save("attach payment intent")

        logger.info(
            f"💳 Payment intent {intent['id']} created for payment {payment.id} "
            f"(contract {contract.id}, {amount_cents} cents)"
        )
        return {
            "client_secret": intent["client_secret"],
            "payment_intent_id": intent["id"],
            "payment_id": payment.id,
            "amount": float(payment.amount),
            "currency": self.currency,
        }

    def get_payable_contract(self, contract_id: int) -> Contract:
        contract = self.repo.get_contract(self.db, contract_id)
        if not contract:
            raise HTTPException(status_code=404, detail="Contract not found")
        if contract.status not in PAYABLE_CONTRACT_STATUSES:
            raise HTTPException(
                status_code=400, detail="Contract must be signed before processing payment"
            )
        return contract

    def get_next_payment(self, contract_id: int) -> Optional[ContractPayment]:
        """Earliest pending or failed payment for the contract"""
        return self.repo.get_next_outstanding_payment(
            self.db, contract_id, [s.value for s in OUTSTANDING_STATUSES]
        )

    async def create_next_payment_intent(self, contract_id: int) -> dict:
        contract = self.get_payable_contract(contract_id)
        payment = self.get_next_payment(contract_id)
        if not payment:
            raise HTTPException(status_code=400, detail="No pending payments found for this contract")
        return await self.create_payment_intent(contract, payment)

    async def create_intent_for_payment(self, contract_id: int, payment_id: int) -> dict:
        contract = self.get_payable_contract(contract_id)
        payment = self.repo.get_payment(self.db, payment_id)
        if not payment or payment.contract_id != contract.id:
            raise HTTPException(status_code=404, detail="Payment not found")
        return await self.create_payment_intent(contract, payment)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Any:
        if not self.api_key:
            raise HTTPException(status_code=500, detail="Stripe not configured")
        return await self._call(stripe.PaymentIntent.retrieve, id=payment_intent_id)

    async def get_payment_intent_status(self, payment_intent_id: str) -> dict:
        intent = await self.retrieve_payment_intent(payment_intent_id)
        metadata = intent.get("metadata") or {}
        return {
            "payment_intent_id": intent["id"],
            "status": intent["status"],
            "payment_status": INTENT_STATUS_MAP.get(intent["status"], "processing"),
            "amount": intent["amount"] / 100,
            "currency": intent.get("currency"),
            "contract_id": metadata.get("contract_id"),
            "payment_id": metadata.get("payment_id"),
        }
