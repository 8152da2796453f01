from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

from studio_site.utils.crypto import random_token
from studio_site.utils.log import logger
from studio_site.utils.periodic import PeriodicTask

SESSION_VALIDITY_S = 60 * 60
SESSION_IDLE_TIMEOUT_S = 30 * 60


@dataclass(slots=True)
class Session:
    id: str
    username: str
    created_at: float
    last_activity: float
    ip_address: str
    user_agent: str


@dataclass(frozen=True, slots=True)
class SessionLookup:
    session: Session | None
    reason: str  # ok|missing|expired|idle


class BindingMode(str, Enum):
    strict = "strict"
    ip = "ip"
    user_agent = "user_agent"
    off = "off"


def binding_matches(mode: BindingMode, session: Session, ip_address: str, user_agent: str) -> bool:
    """
    Compare request attributes against the ones captured at login.

    `strict` rejects users whose IP rotates mid-session (mobile carriers) or who
    switch browsers; `ip` / `user_agent` / `off` relax that.
    """
    if mode is BindingMode.off:
        return True
    ip_ok = session.ip_address == ip_address
    ua_ok = session.user_agent == user_agent
    if mode is BindingMode.ip:
        return ip_ok
    if mode is BindingMode.user_agent:
        return ua_ok
    return ip_ok and ua_ok


class SessionStore:
    """
    In-memory admin sessions with absolute and idle expiry.

    Expiry is enforced on lookup; the periodic sweep only frees memory.
    """

    def __init__(
        self,
        *,
        validity_s: float = SESSION_VALIDITY_S,
        idle_timeout_s: float = SESSION_IDLE_TIMEOUT_S,
        binding: BindingMode = BindingMode.strict,
        clock: Callable[[], float] = time.time,
        sweep_interval_s: float = 5 * 60,
    ) -> None:
        self.validity_s = float(validity_s)
        self.idle_timeout_s = float(idle_timeout_s)
        self.binding = BindingMode(binding)
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicTask(
            self.sweep, interval_s=sweep_interval_s, name="sessions.sweep"
        )

    def __len__(self) -> int:
        return len(self._sessions)

    def _expiry_reason(self, sess: Session, now: float) -> str | None:
        if now - sess.created_at > self.validity_s:
            return "expired"
        if now - sess.last_activity > self.idle_timeout_s:
            return "idle"
        return None

    def create(self, username: str, ip_address: str, user_agent: str) -> str:
        with self._lock:
            sid = random_token(32)
            while sid in self._sessions:
                sid = random_token(32)
            now = self._clock()
            self._sessions[sid] = Session(
                id=sid,
                username=str(username),
                created_at=now,
                last_activity=now,
                ip_address=str(ip_address),
                user_agent=str(user_agent),
            )
        logger.info("session_created", username=username)
        return sid

    def lookup(self, session_id: str | None) -> SessionLookup:
        if not session_id:
            return SessionLookup(session=None, reason="missing")
        with self._lock:
            sess = self._sessions.get(session_id)
            if sess is None:
                return SessionLookup(session=None, reason="missing")
            now = self._clock()
            reason = self._expiry_reason(sess, now)
            if reason is not None:
                del self._sessions[session_id]
            else:
                sess.last_activity = now
                # Callers get a snapshot; the stored record is only mutated here.
                return SessionLookup(session=replace(sess), reason="ok")
        logger.info("session_expired", username=sess.username, reason=reason)
        return SessionLookup(session=None, reason=reason)

    def get(self, session_id: str | None) -> Session | None:
        return self.lookup(session_id).session

    def destroy(self, session_id: str | None) -> bool:
        if not session_id:
            return False
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def destroy_all_for_user(self, username: str) -> list[str]:
        """Drop every session of `username`; returns the removed ids."""
        removed: list[str] = []
        for sid in list(self._sessions):
            with self._lock:
                sess = self._sessions.get(sid)
                if sess is not None and sess.username == username:
                    del self._sessions[sid]
                    removed.append(sid)
        logger.info("sessions_destroyed_for_user", username=username, count=len(removed))
        return removed

    def validate_binding(self, session: Session, ip_address: str, user_agent: str) -> bool:
        return binding_matches(self.binding, session, ip_address, user_agent)

    def sweep(self) -> int:
        removed = 0
        # Key snapshot without the lock; each removal re-checks under it.
        for sid in list(self._sessions):
            with self._lock:
                sess = self._sessions.get(sid)
                if sess is not None and self._expiry_reason(sess, self._clock()) is not None:
                    del self._sessions[sid]
                    removed += 1
        if removed:
            logger.debug("sessions_swept", removed=removed, remaining=len(self._sessions))
        return removed

    def start(self) -> None:
        self._sweeper.start()

    def shutdown(self) -> None:
        self._sweeper.stop()
