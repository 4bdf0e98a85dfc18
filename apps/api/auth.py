# File: apps/api/auth.py
from fastapi import HTTPException, Header, Depends
from firebase_admin import auth as firebase_auth
import asyncio
import logging
import time
from typing import Optional, Dict, Any, Tuple

from .database import get_db

logger = logging.getLogger(__name__)


# Roles that may convert an audited load into an invoice.
INVOICING_ROLES = {"admin", "super_admin", "accounting", "dispatcher"}


async def _to_thread(fn, timeout_s: float = 25.0):
    """Run blocking SDK calls off the event loop with a soft timeout."""
    return await asyncio.wait_for(asyncio.to_thread(fn), timeout=timeout_s)


# Simple in-memory cache to reduce repeated Admin SDK calls.
# Best-effort and process-local (fine for single-instance dev).
_TOKEN_CACHE: Dict[str, Tuple[float, Dict[str, Any]]] = {}


def _cache_get(key: str) -> Optional[Dict[str, Any]]:
    item = _TOKEN_CACHE.get(key)
    if not item:
        return None
    expires_at, value = item
    if expires_at < time.time():
        _TOKEN_CACHE.pop(key, None)
        return None
    return value


def _cache_set(key: str, value: Dict[str, Any], ttl_s: float) -> None:
    _TOKEN_CACHE[key] = (time.time() + ttl_s, value)


async def get_current_user(authorization: str = Header(...)) -> Dict[str, Any]:
    """
    Verifies the Firebase ID token and returns the user profile,
    including the tenant the user acts for.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization.split(" ", 1)[1]

    try:
        decoded_token = _cache_get(token)
        if not decoded_token:
            decoded_token = await _to_thread(lambda: firebase_auth.verify_id_token(token), timeout_s=25.0)
            # Cache briefly; tokens are stable but we keep TTL short for safety.
            _cache_set(token, decoded_token, ttl_s=60.0)
    except asyncio.TimeoutError:
        raise HTTPException(status_code=503, detail="Authentication service timed out")
    except Exception as e:
        logger.info("Token verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    uid = decoded_token.get("uid")
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token structure")

    db = get_db()
    snap = await _to_thread(lambda: db.collection("users").document(uid).get())
    if not snap.exists:
        raise HTTPException(status_code=404, detail="User profile not found")

    profile = snap.to_dict() or {}
    return {
        **profile,
        "uid": uid,
        "email": decoded_token.get("email") or profile.get("email"),
        "role": str(profile.get("role") or "").strip().lower(),
        "tenant_id": str(profile.get("tenant_id") or "").strip() or None,
    }


def require_invoicing_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Require a tenant-bound user allowed to create invoices."""
    role = str(user.get("role") or "").strip().lower()
    if role not in INVOICING_ROLES:
        raise HTTPException(status_code=403, detail="Not allowed to create invoices")
    if not user.get("tenant_id"):
        raise HTTPException(status_code=403, detail="No tenant context for this user")
    return user
