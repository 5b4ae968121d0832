"""x-api-key header check shared by every collector and review route."""

import logging
import os
import secrets

from dotenv import load_dotenv
from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

load_dotenv()

logger = logging.getLogger(__name__)

API_KEY_NAME = "x-api-key"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)
VALID_API_KEY: str = os.getenv("API_KEY", "guardian-dev-key")


async def verify_api_key(request: Request, api_key: str = Security(api_key_header)) -> str:
    """401 unless the header carries the configured key (constant-time compare)."""
    if not api_key:
        logger.warning(f"Rejected {request.url.path}: no {API_KEY_NAME} header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing API key. Send it in the '{API_KEY_NAME}' header.",
        )
    if not secrets.compare_digest(api_key.encode("utf-8"), VALID_API_KEY.encode("utf-8")):
        logger.warning(f"Rejected {request.url.path}: wrong API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
        )
    return api_key
