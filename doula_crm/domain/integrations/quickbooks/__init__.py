"""QuickBooks integration - OAuth connection and payment sync"""

from .router import router

__all__ = ["router"]
