import os
import logging
from typing import Optional

from config import load_config

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure the root logger once: log file + console"""
    global _configured
    if _configured:
        return

    cfg = load_config()
    level = level or cfg.get("LOGGING", "level")
    log_file = log_file or cfg.get("LOGGING", "file")

    folder = os.path.dirname(log_file)
    if folder:
        os.makedirs(folder, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler()  # Affiche aussi en console
        ]
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
