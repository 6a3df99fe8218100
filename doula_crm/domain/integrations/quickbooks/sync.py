"""
QuickBooks payment sync

Pushes legacy charge rows to QuickBooks as Payments. The customer is linked by the
stored QuickBooks id first, then by searching QuickBooks for the email address, and is
only created when neither finds one.
"""

import logging
from datetime import date
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from .... import config
from ....database import utcnow
from ....models import Charge, Customer
from ....models_quickbooks import QuickBooksIntegration, QuickBooksSyncLog
from .client import QuickBooksClient, QuickBooksError, refresh_access_token

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_METHOD_ID = "1"


class QuickBooksSyncService:
    """Syncs charges and their customers to the connected QuickBooks company"""

    def __init__(self, db: Session, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.db = db
        self.transport = transport
        self._payment_method_id: Optional[str] = None

    def get_integration(self) -> Optional[QuickBooksIntegration]:
        return self.db.query(QuickBooksIntegration).order_by(QuickBooksIntegration.id.desc()).first()

    @property
    def enabled(self) -> bool:
        return config.FEATURE_QUICKBOOKS

    async def get_client(self, integration: QuickBooksIntegration) -> QuickBooksClient:
        access_token = await refresh_access_token(integration, self.db, self.transport)
        return QuickBooksClient(
            access_token, integration.realm_id, integration.environment, transport=self.transport
        )

    def _log(
        self,
        integration: QuickBooksIntegration,
        sync_type: str,
        entity_type: str,
        entity_id: int,
        status: str,
        quickbooks_id: Optional[str] = None,
        error_message: Optional[str] = None,
        sync_data: Optional[dict] = None,
    ) -> None:
        self.db.add(
            QuickBooksSyncLog(
                integration_id=integration.id,
                sync_type=sync_type,
                entity_type=entity_type,
                entity_id=entity_id,
                quickbooks_id=quickbooks_id,
                status=status,
                error_message=error_message,
                sync_data=sync_data,
            )
        )

    async def ensure_customer(
        self, client: QuickBooksClient, integration: QuickBooksIntegration, customer: Customer
    ) -> str:
        """Return the QuickBooks customer id for customer, linking or creating it as needed"""
        if customer.qbo_customer_id:
            return customer.qbo_customer_id

        existing = await client.find_customer_by_email(customer.email)
        if existing:
            qbo_id = existing["Id"]
            logger.info(f"🔗 Linked customer {customer.email} to existing QuickBooks customer {qbo_id}")
        else:
            created = await client.create_customer(customer.name or customer.email, customer.email)
            qbo_id = created["Id"]
            logger.info(f"🆕 Created QuickBooks customer {qbo_id} for {customer.email}")
            self._log(integration, "customer", "Customer", customer.id, "success", quickbooks_id=qbo_id)

        customer.qbo_customer_id = qbo_id
        self.db.commit()
        return qbo_id

    async def get_payment_method_id(self, client: QuickBooksClient) -> str:
        if self._payment_method_id is None:
            found = await client.find_payment_method_id(config.QUICKBOOKS_PAYMENT_METHOD_NAME)
            self._payment_method_id = found or DEFAULT_PAYMENT_METHOD_ID
        return self._payment_method_id

    @staticmethod
    def build_payment_payload(charge: Charge, customer_ref: str, payment_method_id: str) -> dict:
        amount = charge.amount / 100
        txn_date = charge.created_at.date() if charge.created_at else date.today()
        return {
            "CustomerRef": {"value": customer_ref},
            "TotalAmt": amount,
            "PaymentMethodRef": {"value": payment_method_id},
            "TxnDate": txn_date.isoformat(),
            "PrivateNote": f"Stripe Payment Intent: {charge.stripe_payment_intent_id}",
            "Line": [{"Amount": amount}],
        }

    async def sync_charge(self, charge: Charge) -> bool:
        """
        Create a QuickBooks Payment for charge.
        Returns True when synced. Failures are recorded on the charge and never raised.
        """
        if charge.qb_sync_status == "synced":
            return True

        integration = self.get_integration()
        if not self.enabled or not integration or not integration.sync_payments:
            logger.info(f"ℹ️ QuickBooks sync not enabled, charge {charge.id} left pending")
            return False

        try:
            if not charge.customer:
                raise QuickBooksError("Charge has no customer to sync")

            client = await self.get_client(integration)
            customer_ref = await self.ensure_customer(client, integration, charge.customer)
            payment_method_id = await self.get_payment_method_id(client)
            payload = self.build_payment_payload(charge, customer_ref, payment_method_id)
            qb_payment = await client.create_payment(payload)
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ QuickBooks sync failed for charge {charge.id}: {str(e)}")
            charge.qb_sync_status = "failed"
            charge.qb_sync_error = str(e)[:2000]
            self._log(integration, "payment", "Charge", charge.id, "failed", error_message=str(e)[:2000])
            self.db.commit()
            return False

        charge.qbo_payment_id = qb_payment.get("Id")
        charge.qb_sync_status = "synced"
        charge.qb_sync_error = None
        integration.last_payment_sync = utcnow()
        self._log(
            integration,
            "payment",
            "Charge",
            charge.id,
            "success",
            quickbooks_id=charge.qbo_payment_id,
            sync_data={"payload": payload},
        )
        self.db.commit()
        logger.info(f"✅ Charge {charge.id} synced to QuickBooks payment {charge.qbo_payment_id}")
        return True

    async def sync_unsynced_charges(self, limit: int = 50) -> dict:
        """Retry pending and failed charges, oldest first"""
        integration = self.get_integration()
        if not self.enabled or not integration:
            logger.info("ℹ️ QuickBooks not connected, skipping charge sync")
            return {"attempted": 0, "synced": 0, "failed": 0}

        charges = (
            self.db.query(Charge)
            .filter(Charge.qb_sync_status.in_(["pending", "failed"]))
            .order_by(Charge.created_at.asc(), Charge.id.asc())
            .limit(limit)
            .all()
        )
        synced = 0
        for charge in charges:
            if await self.sync_charge(charge):
                synced += 1
        return {"attempted": len(charges), "synced": synced, "failed": len(charges) - synced}
