"""
API security helpers.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pricewatch.services.identity_client import IdentityClient, IdentityProviderError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

# Global identity client (will be injected)
identity_client: Optional[IdentityClient] = None


def set_identity_client(client: Optional[IdentityClient]):
    """Set global identity client"""
    global identity_client
    identity_client = client


async def require_bearer_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    """Require a bearer credential the identity provider accepts."""
    if identity_client is None or not identity_client.is_configured():
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Identity provider is not configured"
        )

    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user = await identity_client.get_user(credentials.credentials)
    except IdentityProviderError as e:
        logger.error(f"Token validation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not validate credentials"
        )

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
