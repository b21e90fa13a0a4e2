from __future__ import annotations

import logging

from sphoto.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Apply a single root format; repeated calls only adjust the level.
    settings = get_settings()
    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    root.setLevel(level)
    # Per-request httpx lines drown out the event logs at INFO.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
