from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from studio_site.ops.storage import BlobStore
from studio_site.utils.crypto import random_id
from studio_site.utils.log import _redact_str, logger

MAX_ENTRIES = 10000
AUDIT_LOG_KEY = "audit-log.json"


class AuditEventType(str, Enum):
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    CSRF_FAILURE = "CSRF_FAILURE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    ADMIN_ACTION = "ADMIN_ACTION"
    DATA_MODIFIED = "DATA_MODIFIED"
    DATA_DELETED = "DATA_DELETED"
    FILE_UPLOADED = "FILE_UPLOADED"
    FILE_DELETED = "FILE_DELETED"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"


class Severity(str, Enum):
    info = "info"
    warning = "warning"
    critical = "critical"


_WARN_ON_FAILURE = {
    AuditEventType.LOGIN_FAILURE,
    AuditEventType.CSRF_FAILURE,
    AuditEventType.UNAUTHORIZED_ACCESS,
}
_ALWAYS_CRITICAL = {AuditEventType.SUSPICIOUS_ACTIVITY, AuditEventType.RATE_LIMIT_EXCEEDED}
_ALWAYS_WARNING = {AuditEventType.DATA_DELETED, AuditEventType.FILE_DELETED}


def get_severity(event_type: AuditEventType | str, success: bool) -> Severity:
    et = AuditEventType(event_type)
    if not success and et in _WARN_ON_FAILURE:
        return Severity.warning
    if et in _ALWAYS_CRITICAL:
        return Severity.critical
    if et in _ALWAYS_WARNING:
        return Severity.warning
    return Severity.info


@dataclass(frozen=True, slots=True)
class AuditContext:
    ip_address: str
    user_agent: str


@dataclass(frozen=True, slots=True)
class AuditLogEntry:
    id: str
    timestamp: str  # ISO-8601 UTC
    event_type: AuditEventType
    severity: Severity
    ip_address: str
    user_agent: str
    resource: str
    action: str
    success: bool
    username: str | None = None
    details: dict[str, Any] | None = None

    @property
    def ts(self) -> datetime:
        return _parse_ts(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["event_type"] = self.event_type.value
        d["severity"] = self.severity.value
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AuditLogEntry:
        details = d.get("details")
        timestamp = str(d.get("timestamp") or "")
        _parse_ts(timestamp)
        return cls(
            id=str(d.get("id") or ""),
            timestamp=timestamp,
            event_type=AuditEventType(str(d.get("event_type"))),
            severity=Severity(str(d.get("severity") or "info")),
            ip_address=str(d.get("ip_address") or "unknown"),
            user_agent=str(d.get("user_agent") or "unknown"),
            resource=str(d.get("resource") or ""),
            action=str(d.get("action") or ""),
            success=bool(d.get("success")),
            username=(str(d["username"]) if d.get("username") else None),
            details=details if isinstance(details, dict) else None,
        )


def _parse_ts(raw: str) -> datetime:
    dt = datetime.fromisoformat(str(raw))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _scrub_details(extra: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for kk, vv in extra.items():
        kks = str(kk)
        kl = kks.strip().lower()
        if "password" in kl or "secret" in kl or "token" in kl or kl == "authorization":
            out[kks] = {"redacted": True}
            continue
        if isinstance(vv, str):
            if len(vv) > 200:
                out[kks] = {"redacted": True, "len": len(vv)}
            else:
                out[kks] = _redact_str(vv)
            continue
        if isinstance(vv, (bool, int, float)) or vv is None:
            out[kks] = vv
            continue
        if isinstance(vv, dict):
            out[kks] = {"keys": len(vv)}
            continue
        if isinstance(vv, (list, tuple)):
            out[kks] = {"count": len(vv)}
            continue
        out[kks] = _redact_str(str(vv))[:200]
    return out


class AuditLog:
    """
    Append-only security event log persisted as one JSON array.

    Only the most recent `max_entries` are kept; older ones are dropped on write.
    `record` never raises: a failed write is logged and the guarded operation
    carries on.
    """

    def __init__(
        self,
        store: BlobStore,
        *,
        key: str = AUDIT_LOG_KEY,
        max_entries: int = MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if int(max_entries) < 1:
            raise ValueError("max_entries must be >= 1")
        self.store = store
        self.key = str(key)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _load(self) -> list[dict[str, Any]]:
        raw = self.store.get_json(self.key, [])
        if not isinstance(raw, list):
            logger.warning("audit_log_not_a_list", key=self.key)
            return []
        return [r for r in raw if isinstance(r, dict)]

    def record(
        self,
        event_type: AuditEventType | str,
        context: AuditContext,
        *,
        resource: str,
        action: str,
        success: bool,
        username: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        try:
            et = AuditEventType(event_type)
            entry = AuditLogEntry(
                id=random_id("audit_", 9),
                timestamp=self._now().isoformat(),
                event_type=et,
                severity=get_severity(et, success),
                ip_address=str(context.ip_address or "unknown"),
                user_agent=str(context.user_agent or "unknown"),
                resource=str(resource),
                action=str(action),
                success=bool(success),
                username=username or None,
                details=_scrub_details(extra) if extra else None,
            )
            with self._lock:
                rows = self._load()
                rows.append(entry.to_dict())
                self.store.put_json(self.key, rows[-self.max_entries :])
        except Exception as ex:
            logger.error("audit_write_failed", event_type=str(event_type), error=str(ex))
            return

        log = {
            Severity.critical: logger.error,
            Severity.warning: logger.warning,
        }.get(entry.severity, logger.info)
        log(
            "audit_event",
            event_type=et.value,
            severity=entry.severity.value,
            action=entry.action,
            username=entry.username or "anonymous",
            ip=entry.ip_address,
            success=entry.success,
        )

    def query(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        event_type: AuditEventType | str | None = None,
        username: str | None = None,
        severity: Severity | str | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """
        Entries matching every given filter, newest first.
        """
        with self._lock:
            rows = self._load()
        entries: list[AuditLogEntry] = []
        for r in rows:
            try:
                entries.append(AuditLogEntry.from_dict(r))
            except (ValueError, TypeError):
                continue

        if start is not None:
            lo = _aware(start)
            entries = [e for e in entries if e.ts >= lo]
        if end is not None:
            hi = _aware(end)
            entries = [e for e in entries if e.ts <= hi]
        if event_type:
            et = AuditEventType(event_type)
            entries = [e for e in entries if e.event_type is et]
        if username:
            entries = [e for e in entries if e.username == username]
        if severity:
            sv = Severity(severity)
            entries = [e for e in entries if e.severity is sv]

        # Later appends win ties on equal timestamps.
        entries.reverse()
        entries.sort(key=lambda e: e.ts, reverse=True)
        if limit is not None:
            entries = entries[: max(0, int(limit))]
        return entries
