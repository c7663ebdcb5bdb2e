"""Binary admin / non-admin gate for the management endpoints."""
import hmac

from fastapi import Header

from config import settings
from core.errors import AdminAccessDenied, AdminKeyMissing


async def require_admin(x_admin_key: str | None = Header(None)) -> None:
    if not x_admin_key:
        raise AdminKeyMissing("Admin key required")
    if not settings.ADMIN_API_KEY or not hmac.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise AdminAccessDenied("Admin access denied")
