from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any

from studio_site.config import Settings, get_settings
from studio_site.ops.audit import AuditContext, AuditEventType, AuditLog
from studio_site.ops.storage import build_blob_store
from studio_site.security.csrf import CsrfTokenStore, needs_csrf_validation
from studio_site.security.errors import (
    AuthError,
    CsrfValidationFailure,
    InvalidCredentials,
    RateLimitExceeded,
    SessionBindingMismatch,
    SessionExpired,
    SessionNotFound,
)
from studio_site.security.sessions import BindingMode, Session, SessionStore
from studio_site.utils.crypto import constant_time_equals
from studio_site.utils.log import logger
from studio_site.utils.ratelimit import LOGIN, RateLimitConfig, RateLimiter, RateLimitResult


@dataclass(frozen=True, slots=True)
class RequestContext:
    """
    Transport-neutral view of one request, as the security checks need it.
    """

    client_id: str
    ip_address: str
    user_agent: str
    resource: str
    method: str = "GET"
    authorization: str | None = None
    session_id: str | None = None
    csrf_header: str | None = None
    csrf_cookie: str | None = None

    @property
    def audit(self) -> AuditContext:
        return AuditContext(ip_address=self.ip_address, user_agent=self.user_agent)


@dataclass(frozen=True, slots=True)
class LoginResult:
    ok: bool
    username: str | None = None
    session_id: str | None = None
    csrf_token: str | None = None
    error: AuthError | None = None
    rate_limit: RateLimitResult | None = None


@dataclass(frozen=True, slots=True)
class SessionCheck:
    authenticated: bool
    session: Session | None = None
    error: AuthError | None = None


def parse_basic_auth(header: str | None) -> tuple[str, str] | None:
    """
    `Basic base64(user:password)` -> (user, password).

    The password may contain ':'; only the first one separates the fields.
    """
    if not header:
        return None
    scheme, _, encoded = str(header).strip().partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


class AuthOrchestrator:
    """
    Composes rate limiting, credential checks, sessions, CSRF tokens and the
    audit trail into the decisions the HTTP layer enforces.

    Failures come back as `AuthError` values inside the result objects; nothing
    here raises for a denied request.
    """

    def __init__(
        self,
        *,
        limiter: RateLimiter,
        sessions: SessionStore,
        csrf: CsrfTokenStore,
        audit: AuditLog,
        admin_username: str = "admin",
        admin_password: str | None = None,
        login_limit: RateLimitConfig = LOGIN,
    ) -> None:
        self.limiter = limiter
        self.sessions = sessions
        self.csrf = csrf
        self.audit = audit
        self.admin_username = str(admin_username)
        self._admin_password = admin_password or None
        self.login_limit = login_limit

    def _credentials_ok(self, authorization: str | None) -> str | None:
        creds = parse_basic_auth(authorization)
        if creds is None or self._admin_password is None:
            return None
        username, password = creds
        # Both comparisons always run.
        user_ok = constant_time_equals(username, self.admin_username)
        pass_ok = constant_time_equals(password, self._admin_password)
        return username if (user_ok and pass_ok) else None

    def login(self, ctx: RequestContext) -> LoginResult:
        rl = self.limiter.check(ctx.client_id, self.login_limit)
        if not rl.allowed:
            self.audit.record(
                AuditEventType.RATE_LIMIT_EXCEEDED,
                ctx.audit,
                resource=ctx.resource,
                action="Login rate limit exceeded",
                success=False,
            )
            return LoginResult(ok=False, error=RateLimitExceeded(rl), rate_limit=rl)

        username = self._credentials_ok(ctx.authorization)
        if username is None:
            self.audit.record(
                AuditEventType.LOGIN_FAILURE,
                ctx.audit,
                resource=ctx.resource,
                action="Failed login attempt",
                success=False,
            )
            return LoginResult(ok=False, error=InvalidCredentials("bad credentials"), rate_limit=rl)

        self.audit.record(
            AuditEventType.LOGIN_SUCCESS,
            ctx.audit,
            resource=ctx.resource,
            action="Successful login",
            success=True,
            username=username,
        )
        sid = self.sessions.create(username, ctx.client_id, ctx.user_agent)
        token = self.csrf.generate(sid)
        return LoginResult(
            ok=True, username=username, session_id=sid, csrf_token=token, rate_limit=rl
        )

    def check_session(self, ctx: RequestContext) -> SessionCheck:
        if not ctx.session_id:
            return SessionCheck(authenticated=False, error=SessionNotFound("no session cookie"))

        found = self.sessions.lookup(ctx.session_id)
        if found.session is None:
            self.audit.record(
                AuditEventType.SESSION_EXPIRED,
                ctx.audit,
                resource=ctx.resource,
                action="Session expired or invalid",
                success=False,
                extra={"reason": found.reason},
            )
            if found.reason in {"expired", "idle"}:
                return SessionCheck(authenticated=False, error=SessionExpired(found.reason))
            return SessionCheck(authenticated=False, error=SessionNotFound("unknown session"))

        sess = found.session
        if not self.sessions.validate_binding(sess, ctx.client_id, ctx.user_agent):
            self.audit.record(
                AuditEventType.SUSPICIOUS_ACTIVITY,
                ctx.audit,
                resource=ctx.resource,
                action="Session binding mismatch - possible session hijacking",
                success=False,
                extra={"session_user": sess.username, "binding": self.sessions.binding.value},
            )
            self.sessions.destroy(sess.id)
            self.csrf.discard_for_session(sess.id)
            return SessionCheck(
                authenticated=False, error=SessionBindingMismatch("binding mismatch")
            )

        return SessionCheck(authenticated=True, session=sess)

    def verify_csrf(self, ctx: RequestContext, session: Session) -> AuthError | None:
        if not needs_csrf_validation(ctx.method):
            return None
        reason = None
        if not ctx.csrf_header or not ctx.csrf_cookie:
            reason = "missing token"
        elif not constant_time_equals(ctx.csrf_header, ctx.csrf_cookie):
            reason = "header/cookie mismatch"
        elif not self.csrf.validate(ctx.csrf_header, session.id):
            reason = "token rejected"
        if reason is None:
            return None
        self.audit.record(
            AuditEventType.CSRF_FAILURE,
            ctx.audit,
            resource=ctx.resource,
            action="CSRF validation failed",
            success=False,
            username=session.username,
            extra={"reason": reason, "method": ctx.method.upper()},
        )
        return CsrfValidationFailure(reason)

    def authorize(self, ctx: RequestContext) -> SessionCheck:
        check = self.check_session(ctx)
        if not check.authenticated or check.session is None:
            return check
        err = self.verify_csrf(ctx, check.session)
        if err is not None:
            return SessionCheck(authenticated=False, session=check.session, error=err)
        return check

    def issue_csrf_token(self, session: Session) -> str:
        return self.csrf.generate(session.id)

    def logout(self, ctx: RequestContext) -> bool:
        sess = self.sessions.get(ctx.session_id) if ctx.session_id else None
        destroyed = self.sessions.destroy(ctx.session_id)
        if ctx.session_id:
            self.csrf.discard_for_session(ctx.session_id)
        if destroyed:
            self.audit.record(
                AuditEventType.LOGOUT,
                ctx.audit,
                resource=ctx.resource,
                action="Logout",
                success=True,
                username=sess.username if sess else None,
            )
        return destroyed

    def revoke_user_sessions(self, ctx: RequestContext, *, actor: str, username: str) -> int:
        removed = self.sessions.destroy_all_for_user(username)
        for sid in removed:
            self.csrf.discard_for_session(sid)
        count = len(removed)
        self.log_admin_action(
            ctx,
            action="Revoked all sessions",
            resource=ctx.resource,
            success=True,
            username=actor,
            extra={"target_user": username, "count": count},
        )
        return count

    def log_admin_action(
        self,
        ctx: RequestContext,
        *,
        action: str,
        resource: str,
        success: bool,
        username: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.audit.record(
            AuditEventType.ADMIN_ACTION,
            ctx.audit,
            resource=resource,
            action=action,
            success=success,
            username=username,
            extra=extra,
        )

    def start(self) -> None:
        self.limiter.start()
        self.sessions.start()
        self.csrf.start()

    def shutdown(self) -> None:
        self.csrf.shutdown()
        self.sessions.shutdown()
        self.limiter.shutdown()


def build_auth(s: Settings | None = None) -> AuthOrchestrator:
    """
    Wire the stores from settings. Sweeps are not started here.
    """
    s = s or get_settings()
    pub = s.public
    secret = s.secret.admin_password
    login_limit = RateLimitConfig(
        window_s=float(pub.login_rate_window_sec),
        max_requests=int(pub.login_rate_limit),
        key_prefix=LOGIN.key_prefix,
    )
    auth = AuthOrchestrator(
        limiter=RateLimiter(sweep_interval_s=float(pub.rate_limit_sweep_interval_sec)),
        sessions=SessionStore(
            validity_s=float(pub.session_validity_sec),
            idle_timeout_s=float(pub.session_idle_timeout_sec),
            binding=BindingMode(str(pub.session_binding).strip().lower()),
            sweep_interval_s=float(pub.session_sweep_interval_sec),
        ),
        csrf=CsrfTokenStore(
            ttl_s=float(pub.csrf_token_ttl_sec),
            sweep_interval_s=float(pub.csrf_sweep_interval_sec),
        ),
        audit=AuditLog(
            build_blob_store(s),
            key=str(pub.audit_log_filename),
            max_entries=int(pub.audit_max_entries),
        ),
        admin_username=str(s.secret.admin_username),
        admin_password=secret.get_secret_value() if secret else None,
        login_limit=login_limit,
    )
    if secret is None:
        logger.warning("admin_password_unset", note="admin login is disabled")
    return auth
