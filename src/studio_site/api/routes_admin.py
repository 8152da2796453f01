from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from studio_site.api.deps import (
    get_auth,
    rate_limit,
    request_context,
    require_admin_mutation,
    require_session,
)
from studio_site.ops.audit import AuditEventType, Severity
from studio_site.security.auth import AuthOrchestrator
from studio_site.security.sessions import Session
from studio_site.utils.log import logger
from studio_site.utils.ratelimit import ADMIN

router = APIRouter(prefix="/api/admin", tags=["admin"])


class RevokeRequest(BaseModel):
    username: str = Field(min_length=1, max_length=128)


@router.get("/audit")
def audit_query(
    start: datetime | None = None,
    end: datetime | None = None,
    event_type: AuditEventType | None = None,
    username: str | None = None,
    severity: Severity | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    sess: Session = Depends(require_session),
    auth: AuthOrchestrator = Depends(get_auth),
) -> Any:
    try:
        entries = auth.audit.query(
            start=start,
            end=end,
            event_type=event_type,
            username=username,
            severity=severity,
            limit=limit,
        )
    except Exception as ex:
        logger.error("audit_query_failed", error=str(ex))
        return JSONResponse(status_code=503, content={"error": "Audit log unavailable"})
    logger.info("admin_audit_view", username=sess.username, count=len(entries))
    return {"items": [e.to_dict() for e in entries], "count": len(entries)}


@router.post("/sessions/revoke", dependencies=[Depends(rate_limit(ADMIN))])
def revoke_sessions(
    body: RevokeRequest,
    request: Request,
    sess: Session = Depends(require_admin_mutation),
    auth: AuthOrchestrator = Depends(get_auth),
) -> dict[str, Any]:
    count = auth.revoke_user_sessions(
        request_context(request), actor=sess.username, username=body.username
    )
    return {"ok": True, "username": body.username, "revoked": count}
