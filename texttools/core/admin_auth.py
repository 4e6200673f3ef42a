"""
Shared-secret authentication for internal callers.

The monthly usage reset is triggered by a scheduler that presents
INTERNAL_API_KEY. Comparison is constant-time; an unset key rejects every
caller.
"""
import hashlib
import hmac
import logging
import os
from typing import Optional

from texttools.core.config import settings
from texttools.core.errors import UnauthorizedError


logger = logging.getLogger("texttools.auth")


def get_internal_api_key() -> Optional[str]:
    """Prefer the INTERNAL_API_KEY env var; fall back to settings."""
    env_key = os.getenv("INTERNAL_API_KEY")
    if env_key:
        return env_key
    return settings.INTERNAL_API_KEY


def verify_internal_key(candidate: Optional[str]) -> bool:
    expected = get_internal_api_key()
    if not expected or not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


def require_internal_key(candidate: Optional[str]) -> None:
    """
    Raise UnauthorizedError unless `candidate` matches INTERNAL_API_KEY.

    Rejections are logged with a short hash of the presented key, never the key.
    """
    if verify_internal_key(candidate):
        return
    key_hash = hashlib.sha256((candidate or "").encode()).hexdigest()[:12] if candidate else None
    logger.warning(
        "[auth] internal key rejected",
        extra={"key_hash": key_hash, "configured": bool(get_internal_api_key())},
    )
    raise UnauthorizedError("Unauthorized")
