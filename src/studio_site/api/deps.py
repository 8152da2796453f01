from __future__ import annotations

from fastapi import Depends, HTTPException, Request, Response

from studio_site.api.security import (
    cookie_secure,
    extract_csrf,
    extract_session_id,
    set_csrf_cookie,
)
from studio_site.ops.audit import AuditEventType
from studio_site.security.auth import AuthOrchestrator, RequestContext
from studio_site.security.errors import RateLimitExceeded
from studio_site.security.sessions import Session
from studio_site.utils.log import set_user_id
from studio_site.utils.net import client_identifier, get_client_ip
from studio_site.utils.ratelimit import RateLimitConfig, RateLimitResult


def _ua(request: Request) -> str:
    return str(request.headers.get("user-agent") or "unknown")


def get_auth(request: Request) -> AuthOrchestrator:
    auth = getattr(request.app.state, "auth", None)
    if auth is None:
        raise HTTPException(status_code=500, detail="Auth not initialized")
    return auth


def request_context(request: Request) -> RequestContext:
    csrf_header, csrf_cookie = extract_csrf(request)
    return RequestContext(
        client_id=client_identifier(request),
        ip_address=get_client_ip(request),
        user_agent=_ua(request),
        resource=str(request.url.path),
        method=str(request.method),
        authorization=request.headers.get("authorization"),
        session_id=extract_session_id(request),
        csrf_header=csrf_header,
        csrf_cookie=csrf_cookie,
    )


def require_session(request: Request, auth: AuthOrchestrator = Depends(get_auth)) -> Session:
    check = auth.check_session(request_context(request))
    if check.error is not None or check.session is None:
        raise check.error or HTTPException(status_code=401, detail="Unauthorized")
    set_user_id(check.session.username)
    return check.session


def authorized_session(request: Request, auth: AuthOrchestrator = Depends(get_auth)) -> Session:
    # Session + CSRF on state-changing methods.
    check = auth.authorize(request_context(request))
    if check.error is not None or check.session is None:
        raise check.error or HTTPException(status_code=401, detail="Unauthorized")
    set_user_id(check.session.username)
    return check.session


def require_admin_mutation(
    request: Request,
    response: Response,
    sess: Session = Depends(authorized_session),
    auth: AuthOrchestrator = Depends(get_auth),
) -> Session:
    """
    Authorized session for a state-changing admin call. The consumed CSRF token
    is replaced with a fresh one on the response.
    """
    token = auth.issue_csrf_token(sess)
    set_csrf_cookie(response, token, secure=cookie_secure(request), max_age=int(auth.csrf.ttl_s))
    return sess


def rate_limit(config: RateLimitConfig):
    def dep(
        request: Request, response: Response, auth: AuthOrchestrator = Depends(get_auth)
    ) -> RateLimitResult:
        ctx = request_context(request)
        result = auth.limiter.check(ctx.client_id, config)
        if not result.allowed:
            auth.audit.record(
                AuditEventType.RATE_LIMIT_EXCEEDED,
                ctx.audit,
                resource=ctx.resource,
                action=f"Rate limit exceeded ({config.key_prefix or 'default'})",
                success=False,
            )
            raise RateLimitExceeded(result)
        for k, v in result.headers().items():
            response.headers[k] = v
        return result

    return dep
