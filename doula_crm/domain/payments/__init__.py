"""Payments domain - schedules, payment status lifecycle and Stripe reconciliation"""

from .router import router
from .stripe_router import router as stripe_router

__all__ = ["router", "stripe_router"]
