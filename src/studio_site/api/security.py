from __future__ import annotations

from fastapi import Request, Response

from studio_site.config import get_settings

SESSION_COOKIE = "session_id"
CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"


def is_https_request(request: Request) -> bool:
    try:
        return str(request.url.scheme).lower() == "https"
    except Exception:
        return False


def cookie_secure(request: Request) -> bool:
    return bool(get_settings().cookie_secure) or is_https_request(request)


def _samesite(secure: bool) -> str:
    # Strict over HTTPS; plain-HTTP dev setups get Lax.
    return "strict" if secure else "lax"


def set_session_cookie(resp: Response, session_id: str, *, secure: bool, max_age: int) -> None:
    resp.set_cookie(
        SESSION_COOKIE,
        session_id,
        httponly=True,
        samesite=_samesite(secure),
        secure=secure,
        max_age=int(max_age),
        path="/",
    )


def set_csrf_cookie(resp: Response, token: str, *, secure: bool, max_age: int) -> None:
    """
    Script-readable cookie + response header; the client echoes it back in
    X-CSRF-Token on the next state-changing request.
    """
    resp.set_cookie(
        CSRF_COOKIE,
        token,
        httponly=False,
        samesite=_samesite(secure),
        secure=secure,
        max_age=int(max_age),
        path="/",
    )
    resp.headers[CSRF_HEADER] = token


def clear_auth_cookies(resp: Response, *, secure: bool) -> None:
    for name, httponly in ((SESSION_COOKIE, True), (CSRF_COOKIE, False)):
        resp.set_cookie(
            name,
            "",
            httponly=httponly,
            samesite=_samesite(secure),
            secure=secure,
            max_age=0,
            path="/",
        )


def extract_session_id(request: Request) -> str | None:
    return request.cookies.get(SESSION_COOKIE) or None


def extract_csrf(request: Request) -> tuple[str | None, str | None]:
    """
    (header, cookie) pair for the double-submit check.
    """
    header = (request.headers.get(CSRF_HEADER) or "").strip() or None
    cookie = request.cookies.get(CSRF_COOKIE) or None
    return header, cookie
