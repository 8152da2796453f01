from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import Any


def _first_forwarded(headers: Mapping[str, Any]) -> str | None:
    xff = headers.get("x-forwarded-for")
    if xff:
        first = str(xff).split(",")[0].strip()
        if first:
            return first
    xr = str(headers.get("x-real-ip") or "").strip()
    return xr or None


def _fingerprint(headers: Mapping[str, Any]) -> str:
    ua = str(headers.get("user-agent") or "unknown")
    accept = str(headers.get("accept") or "")
    return hashlib.sha256((ua + accept).encode("utf-8")).hexdigest()[:16]


def client_identifier_from_headers(headers: Mapping[str, Any]) -> str:
    """
    Client key for rate limiting and session binding.

    First X-Forwarded-For hop, then X-Real-IP, else a stable hash of
    User-Agent + Accept. Headers are client-controlled: this is a best-effort
    fingerprint, not an authenticated address.
    """
    fwd = _first_forwarded(headers)
    if fwd:
        return fwd
    return f"ua:{_fingerprint(headers)}"


def client_ip_from_headers(*, peer_ip: str | None, headers: Mapping[str, Any]) -> str:
    """
    Address recorded in audit entries (forwarded hop, real-ip, socket peer).
    """
    fwd = _first_forwarded(headers)
    if fwd:
        return fwd
    peer = (peer_ip or "").strip()
    return peer or "unknown"


def _peer(request: Any) -> str:
    try:
        if getattr(request, "client", None) and getattr(request.client, "host", None):
            return str(request.client.host)
    except Exception:
        return ""
    return ""


def client_identifier(request: Any) -> str:
    headers = getattr(request, "headers", {}) or {}
    return client_identifier_from_headers(headers)


def get_client_ip(request: Any) -> str:
    headers = getattr(request, "headers", {}) or {}
    return client_ip_from_headers(peer_ip=_peer(request), headers=headers)
