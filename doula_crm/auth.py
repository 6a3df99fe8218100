import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError
from jose import jwt as jose_jwt
from pydantic import BaseModel

from . import config

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

ALGORITHM = "HS256"


class AuthenticatedUser(BaseModel):
    """Identity extracted from a verified access token"""

    id: str
    email: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def verify_supabase_token(token: str) -> dict:
    """
    Verify a Supabase access token.
    Supabase signs session JWTs with the project's JWT secret (HS256) and sets aud=authenticated.
    """
    if not config.SUPABASE_JWT_SECRET:
        logger.error("❌ SUPABASE_JWT_SECRET not configured")
        raise HTTPException(status_code=500, detail="Authentication not configured")

    try:
        return jose_jwt.decode(
            token,
            config.SUPABASE_JWT_SECRET,
            algorithms=[ALGORITHM],
            audience=config.SUPABASE_JWT_AUDIENCE,
        )
    except ExpiredSignatureError as e:
        logger.warning("⚠️ Expired token presented")
        raise HTTPException(status_code=401, detail="Token has expired") from e
    except JWTError as e:
        logger.warning(f"⚠️ JWT verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid token") from e


def _role_from_claims(claims: dict) -> str:
    # Staff roles live in app_metadata, which only the service role can write
    app_metadata = claims.get("app_metadata") or {}
    return app_metadata.get("role") or "user"


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """Get current user from the bearer token"""
    if not credentials:
        logger.error("❌ No credentials provided")
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    token = credentials.credentials
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, length: {len(token)}")
        raise HTTPException(
            status_code=401, detail="Invalid token format. Expected a valid JWT token."
        )

    claims = verify_supabase_token(token)

    user_id = claims.get("sub")
    if not user_id:
        logger.error(f"❌ Token missing user ID claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    user = AuthenticatedUser(id=user_id, email=claims.get("email"), role=_role_from_claims(claims))
    logger.debug(f"✅ User authenticated: {user.email}")
    return user


async def require_admin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """Allow only staff with the admin role (payment writes, maintenance, integrations)"""
    if not user.is_admin:
        logger.warning(f"⚠️ User {user.email} attempted an admin-only operation")
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
