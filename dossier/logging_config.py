"""Logging setup for dossier entry points.

``configure_logging()`` is called once by the CLI. It leaves an already
configured root logger alone, so embedding applications and pytest keep
their own handlers.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "dossier.log"
LOG_DIR_ENV = "DOSSIER_LOG_DIR"
LOG_MAX_BYTES = 2 * 1024 * 1024
LOG_BACKUPS = 3

# Per-request chatter from the HTTP and model clients
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "openai")


def build_file_handler(log_dir: Optional[str] = None) -> Optional[RotatingFileHandler]:
    """Rotating handler for ``<log_dir>/dossier.log``, or None when the directory is unusable."""
    log_dir = log_dir or os.getenv(LOG_DIR_ENV, "logs")
    try:
        os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE_NAME),
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUPS,
            encoding="utf-8",
        )
    except OSError as e:
        logging.getLogger(__name__).warning(f"File logging disabled: {e}")
        return None
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def configure_logging(level: int = logging.INFO, log_dir: Optional[str] = None) -> None:
    """Attach console and rotating file handlers to the root logger."""
    root = logging.getLogger()
    if root.handlers:
        return

    # stderr, so `dossier once` can print JSON on stdout
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)

    file_handler = build_file_handler(log_dir)
    if file_handler is not None:
        root.addHandler(file_handler)

    root.setLevel(level)

    noisy_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)
