"""Run the replication API: ``python -m partsync``."""

import uvicorn

from .config.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "partsync.api.replication_api:app",
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.logging.level.lower()
    )


if __name__ == "__main__":
    main()
