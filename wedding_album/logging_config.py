import logging
import os

LOG_LEVEL = (os.getenv("ALBUM_LOG_LEVEL", "INFO") or "INFO").strip().upper()
QUIET_ACCESS_LOG = os.getenv("ALBUM_QUIET_ACCESS_LOG", "1").strip().lower() in {"1", "true", "yes", "on"}
QUIET_WEBSOCKET_LOG = os.getenv("ALBUM_QUIET_WEBSOCKET_LOG", "1").strip().lower() in {"1", "true", "yes", "on"}


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if QUIET_ACCESS_LOG:
        # Keep warning/error lines, suppress normal access noise (200/201 etc).
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    if QUIET_WEBSOCKET_LOG:
        # Guests on flaky phone connections drop sockets constantly.
        logging.getLogger("websockets").setLevel(logging.CRITICAL)
        logging.getLogger("uvicorn.protocols.websockets").setLevel(logging.CRITICAL)
