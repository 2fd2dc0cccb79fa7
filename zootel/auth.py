"""
Requesting-user resolution.

Token verification is handled upstream by the API gateway, which forwards the
authenticated user id in the ``X-User-Id`` header.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        logger.warning("❌ Request without X-User-Id header")
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id.strip()
