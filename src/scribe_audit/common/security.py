"""API key authentication dependencies.

Operators (dashboards, the scheduler) and secret administrators use
different keys so that no operator credential can reach secret
administration routes.
"""

import hmac

from fastapi import Header, HTTPException


async def require_api_key(
    x_audit_api_key: str = Header(..., alias="X-Audit-Api-Key"),
) -> str:
    """FastAPI dependency that validates the operator API key from header."""
    from scribe_audit.common.config import get_settings

    settings = get_settings()
    if not hmac.compare_digest(x_audit_api_key, settings.api_key):
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_audit_api_key


async def require_admin_key(
    x_audit_admin_key: str = Header(..., alias="X-Audit-Admin-Key"),
) -> str:
    """FastAPI dependency that validates the secret-administration key."""
    from scribe_audit.common.config import get_settings

    settings = get_settings()
    if not hmac.compare_digest(x_audit_admin_key, settings.admin_key):
        raise HTTPException(status_code=403, detail="Invalid admin key")
    return x_audit_admin_key
