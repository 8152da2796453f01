from __future__ import annotations

import hmac
import secrets


def random_id(prefix: str = "", n: int = 24) -> str:
    # URL-safe token without padding, deterministic length-ish.
    tok = secrets.token_urlsafe(n)
    return f"{prefix}{tok}"


def random_token(nbytes: int = 32) -> str:
    """
    Hex token from the OS CSPRNG. 32 bytes => 256 bits, 64 hex chars.
    """
    return secrets.token_hex(nbytes)


def constant_time_equals(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return False
    return hmac.compare_digest(str(a).encode("utf-8"), str(b).encode("utf-8"))
