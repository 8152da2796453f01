"""
Settings shim.

The canonical config lives in `config/`:
  - `config/public_config.py` (non-sensitive defaults)
  - `config/secret_config.py` (secrets loaded from env / `.env.secrets`)
  - `config/settings.py` merges both

Package code imports `from studio_site.config import get_settings`.
"""

from __future__ import annotations

from config.settings import Settings as Settings
from config.settings import get_settings as get_settings
from config.settings import get_safe_config_report as get_safe_config_report
