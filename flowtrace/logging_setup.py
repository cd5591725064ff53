from __future__ import annotations

import logging
import os
import pathlib

LOG_NAME = "flowtrace"
LOG_FILE_ENV = "FLOWTRACE_LOG_FILE"


def default_log_path() -> pathlib.Path:
    override = os.environ.get(LOG_FILE_ENV)
    if override:
        return pathlib.Path(override)
    return pathlib.Path.cwd() / "flowtrace.log"


def configure_logging(log_path: pathlib.Path | None = None, level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(LOG_NAME)
    if not logger.handlers:
        path = log_path or default_log_path()
        logger.setLevel(level)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.propagate = False
        logger.info("Logging initialised. Writing to %s", path)
    return logger


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(LOG_NAME).getChild(component)
