"""Centralized logging configuration for kincal entry points.

Usage:
    from kincal.utils.logging_config import setup_logging

    # stderr only:
    setup_logging()

    # stderr + logs/<run_name>.log:
    setup_logging(run_name="kinematic_calibration", debug=True)
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

MAX_BYTES = 5 * 1024 * 1024  # 5 MB
BACKUP_COUNT = 3

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_LOG_DIR = _PROJECT_ROOT / "logs"


def setup_logging(
    level: int = logging.INFO,
    log_file: str | None = None,
    fmt: str = DEFAULT_FORMAT,
    max_bytes: int = MAX_BYTES,
    backup_count: int = BACKUP_COUNT,
    *,
    run_name: str | None = None,
    log_dir: str | Path | None = None,
    debug: bool = False,
) -> str | None:
    """Configure the root logger once per process.

    Returns the resolved log file path, or None when logging to stderr only.
    Later calls are no-ops because of basicConfig.
    """
    if debug:
        level = logging.DEBUG

    resolved_log_file = log_file
    if run_name and not log_file:
        target_dir = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
        resolved_log_file = str(target_dir / f"{run_name}.log")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if resolved_log_file:
        Path(resolved_log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                resolved_log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
        )

    logging.basicConfig(level=level, format=fmt, handlers=handlers)

    return resolved_log_file
