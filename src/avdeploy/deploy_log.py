"""
Deployment Log Module

Console output plus an append-only deployment log file.
"""

import logging
from pathlib import Path
from typing import Optional

DEFAULT_LOG_FILE = "AVDDeploy.log"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(log_file: Optional[str] = DEFAULT_LOG_FILE, verbose: bool = False) -> logging.Logger:
    """
    Configure the 'avdeploy' logger.

    Args:
        log_file: Deployment log path (appended to), or None for console only
        verbose: Show debug messages on the console

    Returns:
        The package logger
    """
    logger = logging.getLogger("avdeploy")
    logger.setLevel(logging.DEBUG)

    # Repeated CLI runs in one process must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        if not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
