"""
QuickBooks OAuth and Sync Integration
Handles the OAuth connection of the practice's QuickBooks company and payment sync
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import quote

import httpx
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .... import config
from ....auth import AuthenticatedUser, require_admin
from ....database import get_db, utcnow
from ....models_quickbooks import QuickBooksIntegration
from .client import (
    QUICKBOOKS_AUTH_URL,
    QUICKBOOKS_REVOKE_URL,
    QUICKBOOKS_SCOPE,
    QuickBooksClient,
    QuickBooksError,
    decrypt_token,
    encrypt_token,
    get_basic_auth_header,
    request_tokens,
)
from .sync import QuickBooksSyncService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/quickbooks", tags=["quickbooks"])


class QuickBooksStatusResponse(BaseModel):
    connected: bool
    enabled: bool
    realm_id: Optional[str] = None
    company_name: Optional[str] = None
    environment: Optional[str] = None
    last_payment_sync: Optional[datetime] = None


def get_sync_service(db: Session = Depends(get_db)) -> QuickBooksSyncService:
    return QuickBooksSyncService(db)


def _require_configured() -> None:
    if not config.QUICKBOOKS_CLIENT_ID or not config.QUICKBOOKS_CLIENT_SECRET:
        raise HTTPException(status_code=500, detail="QuickBooks not configured")


@router.post("/oauth/initiate")
async def initiate_oauth(current_user: AuthenticatedUser = Depends(require_admin)):
    """
    Initiate QuickBooks OAuth 2.0 flow
    Returns authorization URL
    """
    _require_configured()

    # CSRF state token, checked by the frontend on callback
    state = secrets.token_urlsafe(32)

    oauth_url = (
        f"{QUICKBOOKS_AUTH_URL}"
        f"?client_id={config.QUICKBOOKS_CLIENT_ID}"
        f"&response_type=code"
        f"&scope={quote(QUICKBOOKS_SCOPE)}"
        f"&redirect_uri={quote(config.QUICKBOOKS_REDIRECT_URI)}"
        f"&state={state}"
    )

    logger.info(f"QuickBooks OAuth initiated by {current_user.email} ({config.QUICKBOOKS_ENVIRONMENT})")
    return {"success": True, "data": {"oauth_url": oauth_url, "state": state}}


@router.get("/callback-handler")
async def oauth_callback_handler(
    code: str,
    realmId: str,
    state: Optional[str] = None,
    current_user: AuthenticatedUser = Depends(require_admin),
    service: QuickBooksSyncService = Depends(get_sync_service),
):
    """
    Complete QuickBooks OAuth 2.0 flow
    Called by frontend after QuickBooks redirects with authorization code
    """
    _require_configured()
    db = service.db

    try:
        token_data = await request_tokens(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": config.QUICKBOOKS_REDIRECT_URI,
            },
            service.transport,
        )
    except QuickBooksError as e:
        raise HTTPException(status_code=400, detail=f"Failed to exchange authorization code: {e}") from e

    access_token = token_data.get("access_token")
    refresh_token = token_data.get("refresh_token")
    if not access_token or not refresh_token:
        raise HTTPException(status_code=400, detail="Invalid token response from QuickBooks")

    company_name = None
    try:
        qb = QuickBooksClient(access_token, realmId, config.QUICKBOOKS_ENVIRONMENT, service.transport)
        company_name = await qb.get_company_name()
    except QuickBooksError as e:
        logger.warning(f"Failed to fetch company info: {e}")

    try:
        integration = service.get_integration()
        if not integration:
            integration = QuickBooksIntegration()
            db.add(integration)

        integration.realm_id = realmId
        integration.company_name = company_name
        integration.access_token = encrypt_token(access_token)
        integration.refresh_token = encrypt_token(refresh_token)
        integration.token_expires_at = utcnow() + timedelta(
            seconds=token_data.get("expires_in", 3600)
        )
        integration.environment = config.QUICKBOOKS_ENVIRONMENT
        integration.connected_by = current_user.id
        db.commit()
    except Exception as e:
        logger.error(f"QuickBooks OAuth callback error: {str(e)}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to complete QuickBooks connection") from e

    logger.info(f"✅ QuickBooks connected: realm {realmId} ({company_name})")
    return {"success": True, "data": {"realm_id": realmId, "company_name": company_name}}


@router.get("/status")
async def get_status(
    current_user: AuthenticatedUser = Depends(require_admin),
    service: QuickBooksSyncService = Depends(get_sync_service),
):
    """Check whether QuickBooks is connected"""
    integration = service.get_integration()
    if integration:
        status = QuickBooksStatusResponse(
            connected=True,
            enabled=service.enabled,
            realm_id=integration.realm_id,
            company_name=integration.company_name,
            environment=integration.environment,
            last_payment_sync=integration.last_payment_sync,
        )
    else:
        status = QuickBooksStatusResponse(connected=False, enabled=service.enabled)
    return {"success": True, "data": status.model_dump(mode="json")}


@router.post("/disconnect")
async def disconnect(
    current_user: AuthenticatedUser = Depends(require_admin),
    service: QuickBooksSyncService = Depends(get_sync_service),
):
    """Disconnect QuickBooks integration"""
    integration = service.get_integration()
    if not integration:
        raise HTTPException(status_code=404, detail="QuickBooks not connected")

    db = service.db
    try:
        async with httpx.AsyncClient(transport=service.transport, timeout=30) as client:
            await client.post(
                QUICKBOOKS_REVOKE_URL,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "Authorization": f"Basic {get_basic_auth_header()}",
                },
                json={"token": decrypt_token(integration.refresh_token)},
            )
    except httpx.HTTPError as e:
        # The local connection is removed even when Intuit cannot be reached
        logger.warning(f"QuickBooks token revoke failed: {e}")

    try:
        db.delete(integration)
        db.commit()
    except Exception as e:
        logger.error(f"QuickBooks disconnect error: {str(e)}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to disconnect QuickBooks") from e

    logger.info(f"✅ QuickBooks disconnected by {current_user.email}")
    return {"success": True, "data": {"connected": False}}


@router.post("/sync/charges")
async def sync_charges(
    current_user: AuthenticatedUser = Depends(require_admin),
    service: QuickBooksSyncService = Depends(get_sync_service),
):
    """Push pending and failed charges to QuickBooks now"""
    if not service.enabled:
        raise HTTPException(status_code=400, detail="QuickBooks sync is disabled")
    return {"success": True, "data": await service.sync_unsynced_charges()}
