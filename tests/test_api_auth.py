from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from studio_site.server import app
from tests._helpers.auth import basic_header, login_admin


def _set_cookies(r) -> dict[str, str]:
    out = {}
    for raw in r.headers.get_list("set-cookie"):
        name = raw.split("=", 1)[0]
        out[name] = raw
    return out


def test_login_sets_session_and_csrf_cookies() -> None:
    with TestClient(app) as c:
        r = c.post("/api/auth/login", headers=basic_header("admin", "Kiln-Glaze-2024!"))
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["ok"] is True
        assert body["username"] == "admin"
        assert len(body["csrf_token"]) == 64
        assert r.headers["X-CSRF-Token"] == body["csrf_token"]
        assert r.headers["X-RateLimit-Remaining"] == "4"

        cookies = _set_cookies(r)
        sess = cookies["session_id"].lower()
        assert "httponly" in sess
        assert "samesite=lax" in sess
        assert "max-age=3600" in sess
        assert "path=/" in sess
        assert "secure" not in sess
        csrf = cookies["csrf_token"].lower()
        assert "httponly" not in csrf
        assert "max-age=3600" in csrf

        info = c.get("/api/auth/session")
        assert info.status_code == 200
        assert info.json()["authenticated"] is True
        assert info.json()["username"] == "admin"


def test_login_rejects_bad_credentials_generically() -> None:
    with TestClient(app) as c:
        r = c.post("/api/auth/login", headers=basic_header("admin", "nope"))
        assert r.status_code == 401
        assert r.json() == {"error": "Unauthorized"}
        assert r.headers["WWW-Authenticate"].startswith("Basic")

        r2 = c.post("/api/auth/login")
        assert r2.status_code == 401
        assert r2.json() == {"error": "Unauthorized"}
        assert "session_id" not in _set_cookies(r2)


def test_login_rate_limited_after_five_attempts() -> None:
    with TestClient(app) as c:
        for _ in range(5):
            assert c.post("/api/auth/login", headers=basic_header("admin", "x")).status_code == 401
        r = c.post("/api/auth/login", headers=basic_header("admin", "Kiln-Glaze-2024!"))
        assert r.status_code == 429
        assert r.json() == {"error": "Too many requests. Please try again later."}
        assert r.headers["Retry-After"] == "60"
        assert r.headers["X-RateLimit-Remaining"] == "0"

        # Another forwarded client has its own window.
        other = c.post(
            "/api/auth/login",
            headers={**basic_header("admin", "Kiln-Glaze-2024!"), "X-Forwarded-For": "198.51.100.4"},
        )
        assert other.status_code == 200


def test_session_endpoint_requires_cookie() -> None:
    with TestClient(app) as c:
        r = c.get("/api/auth/session")
        assert r.status_code == 401
        assert r.json() == {"error": "Unauthorized"}


def test_logout_requires_csrf_then_clears_session() -> None:
    with TestClient(app) as c:
        headers = login_admin(c)
        denied = c.post("/api/auth/logout")
        assert denied.status_code == 403
        assert denied.json() == {"error": "CSRF validation failed"}

        ok = c.post("/api/auth/logout", headers=headers)
        assert ok.status_code == 200, ok.text
        cookies = _set_cookies(ok)
        assert "max-age=0" in cookies["session_id"].lower()
        assert "max-age=0" in cookies["csrf_token"].lower()

        assert c.get("/api/auth/session").status_code == 401


def test_user_agent_change_invalidates_session() -> None:
    with TestClient(app) as c:
        login_admin(c)
        hijack = c.get("/api/auth/session", headers={"User-Agent": "curl/8.0"})
        assert hijack.status_code == 401
        # The session was destroyed for everyone.
        assert c.get("/api/auth/session").status_code == 401


def test_csrf_refresh_endpoint_issues_new_token() -> None:
    with TestClient(app) as c:
        first = login_admin(c)["X-CSRF-Token"]
        r = c.get("/api/auth/csrf")
        assert r.status_code == 200
        tok = r.json()["csrf_token"]
        assert tok != first
        assert r.headers["X-CSRF-Token"] == tok
        assert c.post("/api/auth/logout", headers={"X-CSRF-Token": tok}).status_code == 200


def test_revoke_rotates_csrf_token_and_rejects_replay() -> None:
    with TestClient(app) as c:
        headers = login_admin(c)
        r = c.post("/api/admin/sessions/revoke", json={"username": "former-staff"}, headers=headers)
        assert r.status_code == 200, r.text
        assert r.json() == {"ok": True, "username": "former-staff", "revoked": 0}
        fresh = r.headers["X-CSRF-Token"]
        assert fresh != headers["X-CSRF-Token"]
        assert "X-RateLimit-Remaining" in r.headers

        replay = c.post("/api/admin/sessions/revoke", json={"username": "x"}, headers=headers)
        assert replay.status_code == 403

        again = c.post(
            "/api/admin/sessions/revoke", json={"username": "x"}, headers={"X-CSRF-Token": fresh}
        )
        assert again.status_code == 200


def test_revoke_own_user_logs_everyone_out() -> None:
    with TestClient(app) as c:
        headers = login_admin(c)
        r = c.post("/api/admin/sessions/revoke", json={"username": "admin"}, headers=headers)
        assert r.status_code == 200
        assert r.json()["revoked"] == 1
        assert c.get("/api/auth/session").status_code == 401


def test_audit_endpoint_filters() -> None:
    with TestClient(app) as c:
        c.post("/api/auth/login", headers=basic_header("admin", "wrong"))
        login_admin(c)

        r = c.get("/api/admin/audit")
        assert r.status_code == 200, r.text
        kinds = [it["event_type"] for it in r.json()["items"]]
        assert kinds[:2] == ["LOGIN_SUCCESS", "LOGIN_FAILURE"]

        failures = c.get("/api/admin/audit", params={"event_type": "LOGIN_FAILURE"}).json()
        assert failures["count"] == 1
        assert failures["items"][0]["severity"] == "warning"

        assert c.get("/api/admin/audit", params={"limit": 1}).json()["count"] == 1
        assert c.get("/api/admin/audit", params={"event_type": "BOGUS"}).status_code == 422


def test_audit_endpoint_requires_session() -> None:
    with TestClient(app) as c:
        assert c.get("/api/admin/audit").status_code == 401


def test_audit_endpoint_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    with TestClient(app) as c:
        login_admin(c)

        def boom(**_kw):
            raise RuntimeError("storage down")

        monkeypatch.setattr(c.app.state.auth.audit, "query", boom)
        r = c.get("/api/admin/audit")
        assert r.status_code == 503
        assert r.json() == {"error": "Audit log unavailable"}


def test_security_headers_and_request_id() -> None:
    with TestClient(app) as c:
        r = c.get("/healthz", headers={"X-Request-ID": "req-123"})
        assert r.status_code == 200
        assert r.json()["status"] == "ok"
        assert r.headers["x-frame-options"] == "SAMEORIGIN"
        assert r.headers["x-content-type-options"] == "nosniff"
        assert r.headers["referrer-policy"] == "strict-origin-when-cross-origin"
        assert r.headers["cross-origin-opener-policy"] == "same-origin"
        assert r.headers["cross-origin-resource-policy"] == "same-origin"
        assert "camera=()" in r.headers["permissions-policy"]
        assert "strict-transport-security" not in r.headers
        assert r.headers["x-request-id"] == "req-123"

        errored = c.get("/api/auth/session")
        assert errored.headers["x-frame-options"] == "SAMEORIGIN"
