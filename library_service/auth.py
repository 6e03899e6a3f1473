import os
import logging

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader


logger = logging.getLogger(__name__)

AUTH_KEY = os.getenv("AUTH_KEY", "dev-secret-key-12345")
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)):
    """
    Dependency that admits only the library administrator.

    Every route under /api depends on this; the administrator's client
    sends the shared key in the X-API-Key header.

    Raises:
        HTTPException: 401 if the key is missing, 403 if it does not match
    """
    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API Key is missing. Include it in the 'X-API-Key' header.",
        )

    if api_key != AUTH_KEY:
        logger.warning("Rejected request with an invalid API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API Key. Access denied.",
        )

    return True
