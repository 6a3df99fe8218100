"""Contracts domain - contract records and e-signature status"""

from .router import router

__all__ = ["router"]
