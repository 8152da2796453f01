from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from studio_site.utils.crypto import random_token
from studio_site.utils.log import logger
from studio_site.utils.periodic import PeriodicTask

CSRF_TOKEN_TTL_S = 60 * 60
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def needs_csrf_validation(method: str) -> bool:
    return str(method or "").upper() not in SAFE_METHODS


@dataclass(frozen=True, slots=True)
class _TokenRecord:
    session_id: str
    created_at: float


class CsrfTokenStore:
    """
    One-time CSRF tokens bound to a session id.

    Tokens are issued into a script-readable cookie and must come back in the
    X-CSRF-Token header (double-submit). A token validates at most once.
    """

    def __init__(
        self,
        *,
        ttl_s: float = CSRF_TOKEN_TTL_S,
        clock: Callable[[], float] = time.time,
        sweep_interval_s: float = 5 * 60,
    ) -> None:
        self.ttl_s = float(ttl_s)
        self._clock = clock
        self._tokens: dict[str, _TokenRecord] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicTask(self.sweep, interval_s=sweep_interval_s, name="csrf.sweep")

    def __len__(self) -> int:
        return len(self._tokens)

    def generate(self, session_id: str) -> str:
        with self._lock:
            token = random_token(32)
            while token in self._tokens:
                token = random_token(32)
            self._tokens[token] = _TokenRecord(session_id=str(session_id), created_at=self._clock())
        return token

    def validate(self, token: str | None, session_id: str) -> bool:
        if not token:
            return False
        with self._lock:
            rec = self._tokens.get(token)
            if rec is None:
                return False
            if self._clock() - rec.created_at > self.ttl_s:
                del self._tokens[token]
                return False
            if rec.session_id != session_id:
                # Left in place: the rightful session may still use it.
                return False
            del self._tokens[token]
        return True

    def discard_for_session(self, session_id: str) -> int:
        removed = 0
        for token in list(self._tokens):
            with self._lock:
                rec = self._tokens.get(token)
                if rec is not None and rec.session_id == session_id:
                    del self._tokens[token]
                    removed += 1
        return removed

    def sweep(self) -> int:
        removed = 0
        for token in list(self._tokens):
            with self._lock:
                rec = self._tokens.get(token)
                if rec is not None and self._clock() - rec.created_at > self.ttl_s:
                    del self._tokens[token]
                    removed += 1
        if removed:
            logger.debug("csrf_tokens_swept", removed=removed, remaining=len(self._tokens))
        return removed

    def start(self) -> None:
        self._sweeper.start()

    def shutdown(self) -> None:
        self._sweeper.stop()
