import logging
import os
import sys
from pathlib import Path

LOGGER_NAME = "upload_server"

FILE_FORMAT = '%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
CONSOLE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logger(log_dir: str = None):
    """Return the shared server logger, attaching its handlers on first use.

    Detailed DEBUG output goes to ``<log_dir>/upload_server.log``; the console
    gets INFO and above unless UPLOAD_SERVER_LOG_LEVEL says otherwise.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    logs_dir = Path(log_dir or os.getenv("UPLOAD_SERVER_LOG_DIR", "logs"))
    logs_dir.mkdir(parents=True, exist_ok=True)
    logger.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(logs_dir / f"{LOGGER_NAME}.log")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(os.getenv("UPLOAD_SERVER_LOG_LEVEL", "INFO").upper())
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger
