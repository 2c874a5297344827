from __future__ import annotations

import uvicorn

from sessionguard.config import get_settings
from sessionguard.logging import get_logger

logger = get_logger(__name__)


def main() -> None:
    settings = get_settings()
    logger.info("server_starting", host=settings.server_host, port=settings.server_port)
    uvicorn.run(
        "sessionguard.app:app",
        host=settings.server_host,
        port=settings.server_port,
        access_log=True,
    )


if __name__ == "__main__":
    main()
