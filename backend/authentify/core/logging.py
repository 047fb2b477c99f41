from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

from authentify.core.config import settings


def setup_logging(log_dir: str | None = None, level: str | None = None) -> logging.Logger:
    logger = logging.getLogger("authentify")
    logger.setLevel((level or settings.LOG_LEVEL).upper())
    logger.propagate = False

    target_dir = log_dir if log_dir is not None else settings.LOG_DIR
    if target_dir and not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        os.makedirs(target_dir, exist_ok=True)
        text_path = os.path.join(target_dir, "authentify.log")
        h = RotatingFileHandler(text_path, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        h.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        logger.addHandler(h)

    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler) for h in logger.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logger.addHandler(sh)

    return logger
