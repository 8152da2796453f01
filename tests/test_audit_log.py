from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from studio_site.ops.audit import (
    AuditContext,
    AuditEventType,
    AuditLog,
    Severity,
    get_severity,
)
from studio_site.ops.storage import BlobStoreError, LocalJsonStore
from tests._helpers.clock import FakeClock

CTX = AuditContext(ip_address="203.0.113.7", user_agent="UA/1")


class _BrokenStore:
    def get_json(self, key: str, default: Any) -> Any:
        raise BlobStoreError("unreachable")

    def put_json(self, key: str, value: Any) -> None:
        raise BlobStoreError("unreachable")


def _log(tmp_path: Path, clock: FakeClock | None = None, **kw) -> AuditLog:
    return AuditLog(LocalJsonStore(tmp_path), clock=clock or FakeClock(), **kw)


def _rec(log: AuditLog, et: AuditEventType, *, success: bool = True, username: str | None = None):
    log.record(et, CTX, resource="/api/x", action="act", success=success, username=username)


@pytest.mark.parametrize(
    ("event_type", "success", "expected"),
    [
        (AuditEventType.LOGIN_FAILURE, False, Severity.warning),
        (AuditEventType.CSRF_FAILURE, False, Severity.warning),
        (AuditEventType.UNAUTHORIZED_ACCESS, False, Severity.warning),
        (AuditEventType.SUSPICIOUS_ACTIVITY, False, Severity.critical),
        (AuditEventType.RATE_LIMIT_EXCEEDED, False, Severity.critical),
        (AuditEventType.DATA_DELETED, True, Severity.warning),
        (AuditEventType.FILE_DELETED, True, Severity.warning),
        (AuditEventType.LOGIN_SUCCESS, True, Severity.info),
        (AuditEventType.LOGIN_FAILURE, True, Severity.info),
        (AuditEventType.ADMIN_ACTION, False, Severity.info),
        (AuditEventType.LOGOUT, True, Severity.info),
    ],
)
def test_severity(event_type: AuditEventType, success: bool, expected: Severity) -> None:
    assert get_severity(event_type, success) is expected


def test_record_persists_snake_case_entry(tmp_path: Path) -> None:
    clock = FakeClock()
    log = _log(tmp_path, clock)
    log.record(
        AuditEventType.LOGIN_SUCCESS,
        CTX,
        resource="/api/auth/login",
        action="Successful login",
        success=True,
        username="admin",
    )
    rows = json.loads((tmp_path / "audit-log.json").read_text(encoding="utf-8"))
    assert len(rows) == 1
    row = rows[0]
    assert row["event_type"] == "LOGIN_SUCCESS"
    assert row["severity"] == "info"
    assert row["ip_address"] == "203.0.113.7"
    assert row["user_agent"] == "UA/1"
    assert row["username"] == "admin"
    assert row["success"] is True
    assert row["id"].startswith("audit_")
    assert datetime.fromisoformat(row["timestamp"]).timestamp() == clock.now


def test_query_newest_first_with_filters(tmp_path: Path) -> None:
    clock = FakeClock()
    log = _log(tmp_path, clock)
    _rec(log, AuditEventType.LOGIN_FAILURE, success=False)
    clock.advance(10)
    _rec(log, AuditEventType.LOGIN_SUCCESS, username="admin")
    clock.advance(10)
    _rec(log, AuditEventType.ADMIN_ACTION, username="admin")
    clock.advance(10)
    _rec(log, AuditEventType.RATE_LIMIT_EXCEEDED, success=False)

    all_ = log.query()
    assert [e.event_type for e in all_] == [
        AuditEventType.RATE_LIMIT_EXCEEDED,
        AuditEventType.ADMIN_ACTION,
        AuditEventType.LOGIN_SUCCESS,
        AuditEventType.LOGIN_FAILURE,
    ]
    assert [e.event_type for e in log.query(username="admin")] == [
        AuditEventType.ADMIN_ACTION,
        AuditEventType.LOGIN_SUCCESS,
    ]
    assert len(log.query(event_type=AuditEventType.LOGIN_FAILURE)) == 1
    assert len(log.query(event_type="LOGIN_FAILURE")) == 1
    assert [e.severity for e in log.query(severity="critical")] == [Severity.critical]
    assert len(log.query(limit=2)) == 2

    t0 = datetime.fromtimestamp(clock.now - 20, tz=timezone.utc)
    t1 = datetime.fromtimestamp(clock.now - 10, tz=timezone.utc)
    window = log.query(start=t0, end=t1)
    assert [e.event_type for e in window] == [
        AuditEventType.ADMIN_ACTION,
        AuditEventType.LOGIN_SUCCESS,
    ]


def test_equal_timestamps_keep_latest_first(tmp_path: Path) -> None:
    log = _log(tmp_path)
    _rec(log, AuditEventType.LOGIN_SUCCESS)
    _rec(log, AuditEventType.LOGOUT)
    assert [e.event_type for e in log.query()] == [
        AuditEventType.LOGOUT,
        AuditEventType.LOGIN_SUCCESS,
    ]


def test_cap_keeps_most_recent_entries(tmp_path: Path) -> None:
    clock = FakeClock()
    log = _log(tmp_path, clock, max_entries=3)
    for i in range(5):
        log.record(AuditEventType.ADMIN_ACTION, CTX, resource="/r", action=f"a{i}", success=True)
        clock.advance(1)
    entries = log.query()
    assert [e.action for e in entries] == ["a4", "a3", "a2"]


def test_record_never_raises_on_store_failure() -> None:
    log = AuditLog(_BrokenStore(), clock=FakeClock())
    _rec(log, AuditEventType.LOGIN_FAILURE, success=False)


def test_query_propagates_store_failure() -> None:
    log = AuditLog(_BrokenStore(), clock=FakeClock())
    with pytest.raises(BlobStoreError):
        log.query()


def test_extra_details_are_scrubbed(tmp_path: Path) -> None:
    log = _log(tmp_path)
    log.record(
        AuditEventType.ADMIN_ACTION,
        CTX,
        resource="/r",
        action="x",
        success=True,
        extra={"password": "hunter2", "csrf_token": "abc", "note": "n" * 500, "count": 3},
    )
    details = log.query()[0].details
    assert details is not None
    assert details["password"] == {"redacted": True}
    assert details["csrf_token"] == {"redacted": True}
    assert details["note"] == {"redacted": True, "len": 500}
    assert details["count"] == 3


def test_malformed_rows_are_skipped(tmp_path: Path) -> None:
    (tmp_path / "audit-log.json").write_text(
        json.dumps([{"event_type": "NOPE"}, "junk", {"timestamp": "bad", "event_type": "LOGOUT"}]),
        encoding="utf-8",
    )
    log = _log(tmp_path)
    assert log.query() == []
    _rec(log, AuditEventType.LOGOUT)
    assert len(log.query()) == 1


def test_concurrent_records_do_not_lose_entries(tmp_path: Path) -> None:
    log = AuditLog(LocalJsonStore(tmp_path))

    def worker() -> None:
        for _ in range(10):
            _rec(log, AuditEventType.ADMIN_ACTION)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(log.query()) == 40


def test_limit_zero_returns_nothing(tmp_path: Path) -> None:
    clock = FakeClock()
    log = _log(tmp_path, clock)
    for _ in range(3):
        _rec(log, AuditEventType.ADMIN_ACTION)
        clock.advance(1)
    assert log.query(limit=0) == []
    assert log.query(limit=-1) == []
    assert len(log.query(limit=None)) == 3
