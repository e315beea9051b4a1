from __future__ import annotations

import hmac

from fastapi import Header, HTTPException

from erp_outbox.core.config import settings


def require_admin_token(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> None:
    if settings.AUTH_DISABLED:
        return
    if not x_admin_token or not hmac.compare_digest(x_admin_token.encode(), settings.ADMIN_TOKEN.encode()):
        raise HTTPException(status_code=401, detail="Invalid admin token")
