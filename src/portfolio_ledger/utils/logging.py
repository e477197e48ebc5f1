from __future__ import annotations

import logging
import os

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    root = logging.getLogger()
    if root.handlers:
        if level is not None:
            root.setLevel(level)
        return

    resolved: str | int = level if level is not None else os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=resolved, format=_DEFAULT_FORMAT)


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
