from __future__ import annotations

import uvicorn

from event_ingest.config import settings


def main() -> None:
    uvicorn.run(
        "event_ingest.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        timeout_keep_alive=settings.SERVER_IDLE_TIMEOUT,
        log_config=None,
    )


if __name__ == "__main__":
    main()
