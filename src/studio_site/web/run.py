from __future__ import annotations

import uvicorn

from studio_site.config import get_settings


def main() -> None:
    s = get_settings()
    uvicorn.run(
        "studio_site.server:app",
        host=str(s.host),
        port=int(s.port),
        reload=False,
    )
