from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from studio_site.api.deps import authorized_session, get_auth, request_context, require_session
from studio_site.api.security import (
    clear_auth_cookies,
    cookie_secure,
    set_csrf_cookie,
    set_session_cookie,
)
from studio_site.security.auth import AuthOrchestrator
from studio_site.security.sessions import Session
from studio_site.utils.log import logger, set_user_id
from studio_site.utils.time import iso_utc

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login")
def login(
    request: Request, response: Response, auth: AuthOrchestrator = Depends(get_auth)
) -> dict[str, Any]:
    res = auth.login(request_context(request))
    if not res.ok:
        raise res.error
    set_user_id(res.username)
    if res.rate_limit is not None:
        for k, v in res.rate_limit.headers().items():
            response.headers[k] = v

    secure = cookie_secure(request)
    set_session_cookie(
        response, str(res.session_id), secure=secure, max_age=int(auth.sessions.validity_s)
    )
    set_csrf_cookie(response, str(res.csrf_token), secure=secure, max_age=int(auth.csrf.ttl_s))
    return {"ok": True, "username": res.username, "csrf_token": res.csrf_token}


@router.get("/session")
def session_info(sess: Session = Depends(require_session)) -> dict[str, Any]:
    return {
        "authenticated": True,
        "username": sess.username,
        "created_at": iso_utc(sess.created_at),
        "last_activity": iso_utc(sess.last_activity),
    }


@router.get("/csrf")
def refresh_csrf(
    request: Request,
    response: Response,
    sess: Session = Depends(require_session),
    auth: AuthOrchestrator = Depends(get_auth),
) -> dict[str, Any]:
    token = auth.issue_csrf_token(sess)
    set_csrf_cookie(response, token, secure=cookie_secure(request), max_age=int(auth.csrf.ttl_s))
    return {"csrf_token": token}


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    sess: Session = Depends(authorized_session),
    auth: AuthOrchestrator = Depends(get_auth),
) -> dict[str, Any]:
    auth.logout(request_context(request))
    clear_auth_cookies(response, secure=cookie_secure(request))
    logger.info("logout", username=sess.username)
    return {"ok": True}
