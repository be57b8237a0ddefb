# logger.py - Audit log streams for ledger writes and profit runs
import os
import logging
from logging.handlers import RotatingFileHandler

AUDIT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
CONSOLE_FORMAT = "%(name)s - %(levelname)s - %(message)s"


def log_dir():
    """LOG_DIR as currently set, created on first use."""
    path = os.environ.get("LOG_DIR", "logs")
    os.makedirs(path, exist_ok=True)
    return path


def _rotation():
    max_bytes = int(os.environ.get("LOG_MAX_BYTES", 1024 * 1024))
    backup_count = int(os.environ.get("LOG_BACKUP_COUNT", 10))
    return max_bytes, backup_count


def setup_audit_logger(stream, level=logging.INFO):
    """
    Logger `audit.<stream>` appending to <LOG_DIR>/<stream>.log.

    Calling it again for the same stream returns the configured logger
    without stacking another file handler.
    """
    logger = logging.getLogger(f"audit.{stream}")
    if any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        return logger

    max_bytes, backup_count = _rotation()
    file_handler = RotatingFileHandler(
        os.path.join(log_dir(), f"{stream}.log"),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(AUDIT_FORMAT))
    file_handler.setLevel(level)

    logger.setLevel(level)
    logger.addHandler(file_handler)

    if os.environ.get("FLASK_ENV") != "production":
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(console_handler)

    return logger


# LEDGER_ENTRY / LEDGER_COMPLETE / LEDGER_REJECT lines
ledger_logger = setup_audit_logger("ledger")
# DAILY_PROFIT / MONTHLY_PROFIT / batch summaries
distribution_logger = setup_audit_logger("distribution")
