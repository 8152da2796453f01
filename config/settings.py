from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from pydantic import SecretStr

from .public_config import PublicConfig
from .secret_config import SecretConfig


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Merged settings view (dot-access).

    Precedence:
      - secrets override public when names overlap
    """

    public: PublicConfig
    secret: SecretConfig

    def __getattr__(self, name: str) -> Any:
        if hasattr(self.secret, name):
            return getattr(self.secret, name)
        return getattr(self.public, name)

    def cors_origin_list(self) -> list[str]:
        return self.public.cors_origin_list()

    def s3_configured(self) -> bool:
        return bool(
            self.public.s3_endpoint
            and self.public.s3_bucket
            and self.secret.s3_access_key_id
            and _secret_value(self.secret.s3_secret_access_key)
        )


def _is_production_env() -> bool:
    env = str(os.environ.get("ENV") or os.environ.get("APP_ENV") or "").strip().lower()
    return env in {"prod", "production"}


def _secret_value(secret: SecretStr | None) -> str:
    try:
        return secret.get_secret_value() if secret else ""
    except Exception:
        return ""


def _is_strong_secret(value: str) -> bool:
    v = str(value or "")
    if len(v) < 12:
        return False
    has_lower = any(c.islower() for c in v)
    has_upper = any(c.isupper() for c in v)
    has_digit = any(c.isdigit() for c in v)
    has_symbol = any(not c.isalnum() for c in v)
    classes = sum([has_lower, has_upper, has_digit, has_symbol])
    if len(v) >= 24 and classes >= 2:
        return True
    return classes >= 3


_PLACEHOLDER_PASSWORDS = {"change-me", "admin", "adminpass", "password", "123456"}


def _validate_secrets(s: Settings) -> None:
    """
    Hard-fail only in production or when explicitly requested (STRICT_SECRETS=1).

    Dev boots with a missing/weak admin password log a warning; login then simply
    never succeeds until ADMIN_PASSWORD is set.
    """
    strict = bool(int(os.environ.get("STRICT_SECRETS", "0") or "0"))
    prod = _is_production_env()

    weak: list[str] = []
    apw = _secret_value(s.secret.admin_password)
    if not apw or apw.strip().lower() in _PLACEHOLDER_PASSWORDS:
        weak.append("ADMIN_PASSWORD")
    elif prod and not _is_strong_secret(apw):
        weak.append("ADMIN_PASSWORD")

    if prod:
        if not bool(s.public.cookie_secure):
            weak.append("COOKIE_SECURE")
        for o in s.public.cors_origin_list():
            if "*" in str(o):
                weak.append("CORS_ORIGINS")
                break

    binding = str(s.public.session_binding or "").strip().lower()
    if binding not in {"strict", "ip", "user_agent", "off"}:
        raise ConfigError(f"SESSION_BINDING must be strict|ip|user_agent|off, got {binding!r}")

    if weak:
        if prod or strict:
            raise ConfigError(
                "Unsafe security configuration detected: "
                + ", ".join(sorted(set(weak)))
                + ". Set them via environment variables or `.env.secrets`."
            )
        logging.getLogger("studio_site").warning(
            "weak_secrets_detected",
            extra={"weak": sorted(set(weak)), "strict_secrets": False, "production": prod},
        )


def get_safe_config_report() -> dict[str, Any]:
    """
    Deterministic, non-sensitive config report.

    - Public values are included (paths are stringified)
    - Secret values are NEVER included; only SET/UNSET markers
    """
    s = get_settings()

    pub = s.public.model_dump()
    pub_s: dict[str, Any] = {}
    for k, v in pub.items():
        pub_s[k] = str(v) if hasattr(v, "__fspath__") else v

    sec: dict[str, str] = {}
    for k in sorted(SecretConfig.model_fields.keys()):
        v = getattr(s.secret, k, None)
        if v is None:
            sec[k] = "UNSET"
        elif isinstance(v, SecretStr):
            sec[k] = "SET" if v.get_secret_value() else "UNSET"
        else:
            sec[k] = "SET" if str(v).strip() else "UNSET"

    strict = bool(int(os.environ.get("STRICT_SECRETS", "0") or "0"))
    return {
        "strict_secrets": strict,
        "production": _is_production_env(),
        "public": pub_s,
        "secrets": sec,
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    public = PublicConfig()
    secret = SecretConfig()
    s = Settings(public=public, secret=secret)
    _validate_secrets(s)
    return s
