"""
Logging setup for the checkout service.

setup_logging() is called once when main.py is imported. The level comes from
settings.LOG_LEVEL unless one is passed explicitly.
"""
import logging
import sys
from typing import Optional

from config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Loggers of this service; they follow the configured level even when the
# root logger was set up elsewhere (uvicorn, pytest).
SERVICE_LOGGERS = ("main", "coupon_engine", "payment_engine", "gateway", "exceptions")

# Third-party loggers kept at WARNING. The Razorpay SDK talks through requests/urllib3.
QUIET_LOGGERS = ("urllib3", "sqlalchemy")


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> int:
    """
    Configure application-wide logging and return the numeric level applied.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL). Unknown names
            fall back to INFO. Defaults to settings.LOG_LEVEL.
        log_format: Custom format string (optional)
    """
    numeric_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format=log_format or LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in SERVICE_LOGGERS:
        logging.getLogger(name).setLevel(numeric_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return numeric_level


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
