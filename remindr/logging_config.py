"""
Logging configuration for remindr.

The CLI is quiet by default; the daemon always keeps an ops log.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path


def configure_quiet_mode(quiet: bool = True):
    """
    Keep the remindr loggers out of the user's terminal.

    Args:
        quiet: If True, only warnings and above reach stderr.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        logging.getLogger("remindr").setLevel(logging.WARNING)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("remindr").setLevel(logging.DEBUG)


def configure_ops_log(log_dir: Path) -> RotatingFileHandler:
    """Configure the persistent operations log.

    Writes to {log_dir}/remindr.log using a rotating file handler
    (1MB max, 3 backups). Always active in the daemon regardless of
    --verbose. Returns the handler so it can be removed on shutdown.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "remindr.log"
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    remindr_logger = logging.getLogger("remindr")
    remindr_logger.addHandler(handler)
    # Ensure INFO gets through even when quiet mode raised the level
    if remindr_logger.level == logging.NOTSET or remindr_logger.level > logging.INFO:
        remindr_logger.setLevel(logging.INFO)

    return handler
