"""
Webhook Security Module

Signature verification for the Stripe webhook endpoint.
- Signatures are checked with the Stripe SDK (HMAC-SHA256, constant-time compare)
- Stripe's timestamp tolerance rejects replayed deliveries
- Any verification problem fails closed
"""

import json
import logging
from typing import Optional

import stripe

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""

    pass


def verify_stripe_signature(
    payload: bytes,
    signature: Optional[str],
    secret: str,
    tolerance: int = MAX_WEBHOOK_AGE_SECONDS,
) -> dict:
    """
    Verify a Stripe webhook and return the decoded event.

    Raises:
        WebhookSignatureError: for a missing header, a bad signature, a stale
        timestamp or a body that is not JSON
    """
    if not signature:
        logger.warning("🚫 Stripe webhook missing Stripe-Signature header")
        raise WebhookSignatureError("Invalid webhook signature")

    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(body, signature, secret, tolerance)
        event = json.loads(body)
    except Exception as e:
        logger.warning(f"🚫 Stripe webhook signature verification failed: {e}")
        raise WebhookSignatureError("Invalid webhook signature") from e

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        logger.warning("🚫 Stripe webhook payload missing id or type")
        raise WebhookSignatureError("Invalid webhook signature")

    return event
