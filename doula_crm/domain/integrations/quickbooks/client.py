"""
QuickBooks Online API client
OAuth token handling and the small set of accounting API calls used for payment sync
"""

import base64
import hashlib
import logging
from datetime import timedelta
from typing import Any, Optional

import httpx
from cryptography.fernet import Fernet
from sqlalchemy.orm import Session

from .... import config
from ....database import utcnow
from ....models_quickbooks import QuickBooksIntegration

logger = logging.getLogger(__name__)

QUICKBOOKS_AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
QUICKBOOKS_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
QUICKBOOKS_REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
QUICKBOOKS_SCOPE = "com.intuit.quickbooks.accounting"
MINOR_VERSION = "65"

API_BASE_URLS = {
    "production": "https://quickbooks.api.intuit.com/v3",
    "sandbox": "https://sandbox-quickbooks.api.intuit.com/v3",
}


class QuickBooksError(Exception):
    """Raised when a QuickBooks API or OAuth call fails"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


# Encryption for tokens - Fernet needs a 32-byte urlsafe key, derived from SECRET_KEY
_fernet_key = base64.urlsafe_b64encode(hashlib.sha256(config.SECRET_KEY.encode()).digest())
cipher_suite = Fernet(_fernet_key)


def encrypt_token(token: str) -> str:
    """Encrypt a token for storage"""
    return cipher_suite.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored token"""
    return cipher_suite.decrypt(encrypted_token.encode()).decode()


def get_basic_auth_header() -> str:
    """Generate Basic Auth header for QuickBooks"""
    credentials = f"{config.QUICKBOOKS_CLIENT_ID}:{config.QUICKBOOKS_CLIENT_SECRET}"
    return base64.b64encode(credentials.encode()).decode()


def escape_query_value(value: str) -> str:
    """Escape a literal for the QuickBooks query language"""
    return value.replace("\\", "\\\\").replace("'", "\\'")


async def request_tokens(data: dict, transport: Optional[httpx.AsyncBaseTransport] = None) -> dict:
    """POST to the Intuit token endpoint (authorization_code or refresh_token grant)"""
    async with httpx.AsyncClient(transport=transport, timeout=30) as client:
        response = await client.post(
            QUICKBOOKS_TOKEN_URL,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/x-www-form-urlencoded",
                "Authorization": f"Basic {get_basic_auth_header()}",
            },
            data=data,
        )

    if response.status_code != 200:
        logger.error(f"❌ QuickBooks token request failed: {response.text}")
        raise QuickBooksError(f"Token request failed: {response.text}", response.status_code)

    return response.json()


async def refresh_access_token(
    integration: QuickBooksIntegration,
    db: Session,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Return a valid access token, refreshing it when it expires within 5 minutes"""
    if integration.token_expires_at > utcnow() + timedelta(minutes=5):
        return decrypt_token(integration.access_token)

    token_data = await request_tokens(
        {"grant_type": "refresh_token", "refresh_token": decrypt_token(integration.refresh_token)},
        transport,
    )

    new_access_token = token_data["access_token"]
    integration.access_token = encrypt_token(new_access_token)
    integration.refresh_token = encrypt_token(token_data.get("refresh_token") or decrypt_token(integration.refresh_token))
    integration.token_expires_at = utcnow() + timedelta(seconds=token_data.get("expires_in", 3600))
    db.commit()

    logger.info(f"🔄 QuickBooks access token refreshed for realm {integration.realm_id}")
    return new_access_token


class QuickBooksClient:
    """Async client for the QuickBooks Online accounting API"""

    def __init__(
        self,
        access_token: str,
        realm_id: str,
        environment: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.realm_id = realm_id
        self.base_url = API_BASE_URLS.get(environment or config.QUICKBOOKS_ENVIRONMENT, API_BASE_URLS["sandbox"])
        self.transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}/company/{self.realm_id}/{path}"
        params = {"minorversion": MINOR_VERSION, **kwargs.pop("params", {})}

        async with httpx.AsyncClient(transport=self.transport, timeout=30) as client:
            response = await client.request(
                method,
                url,
                params=params,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.access_token}",
                },
                **kwargs,
            )

        if response.status_code not in (200, 201):
            logger.error(f"❌ QuickBooks {method} {path} failed ({response.status_code}): {response.text}")
            raise QuickBooksError(
                f"QuickBooks API error {response.status_code}: {response.text}", response.status_code
            )
        return response.json()

    async def query(self, statement: str) -> dict:
        data = await self._request("GET", "query", params={"query": statement})
        return data.get("QueryResponse", {})

    async def find_customer_by_email(self, email: str) -> Optional[dict]:
        result = await self.query(
            f"SELECT * FROM Customer WHERE PrimaryEmailAddr = '{escape_query_value(email)}'"
        )
        customers = result.get("Customer") or []
        return customers[0] if customers else None

    async def create_customer(
        self, display_name: str, email: Optional[str] = None, phone: Optional[str] = None
    ) -> dict:
        payload: dict[str, Any] = {"DisplayName": display_name}
        if email:
            payload["PrimaryEmailAddr"] = {"Address": email}
        if phone:
            payload["PrimaryPhone"] = {"FreeFormNumber": phone}

        data = await self._request("POST", "customer", json=payload)
        return data.get("Customer", {})

    async def find_payment_method_id(self, name: str) -> Optional[str]:
        result = await self.query(
            f"SELECT * FROM PaymentMethod WHERE Name = '{escape_query_value(name)}'"
        )
        methods = result.get("PaymentMethod") or []
        return methods[0].get("Id") if methods else None

    async def create_payment(self, payload: dict) -> dict:
        data = await self._request("POST", "payment", json=payload)
        return data.get("Payment", {})

    async def get_company_name(self) -> Optional[str]:
        data = await self._request("GET", f"companyinfo/{self.realm_id}")
        return data.get("CompanyInfo", {}).get("CompanyName")
