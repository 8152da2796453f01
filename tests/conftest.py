from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator

import pytest

# Logging is configured on first import; keep it out of the working tree.
os.environ.setdefault("STUDIO_LOG_DIR", tempfile.mkdtemp(prefix="studio_logs_"))

from studio_site.config import get_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _test_env(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> Iterator[None]:
    root = tmp_path_factory.mktemp("studio_test")
    (root / "data").mkdir(parents=True, exist_ok=True)
    (root / "logs").mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("APP_ROOT", str(root))
    monkeypatch.setenv("STUDIO_DATA_DIR", str(root / "data"))
    monkeypatch.setenv("STUDIO_LOG_DIR", str(root / "logs"))
    monkeypatch.setenv("ADMIN_USERNAME", "admin")
    monkeypatch.setenv("ADMIN_PASSWORD", "Kiln-Glaze-2024!")
    monkeypatch.setenv("COOKIE_SECURE", "0")
    monkeypatch.setenv("AUDIT_BACKEND", "local")
    monkeypatch.delenv("ENV", raising=False)
    monkeypatch.delenv("APP_ENV", raising=False)
    monkeypatch.delenv("STRICT_SECRETS", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
