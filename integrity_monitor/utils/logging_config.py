"""
Logging setup for the integrity monitor service

Console output plus optional rotating files: one per day for everything,
one shared file for errors only.
"""
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty third-party loggers, capped so per-frame traffic stays readable
NOISY_LOGGERS: Dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "ultralytics": logging.WARNING,
    "multipart": logging.INFO,
}


def _rotating_handler(path: Path, level: int, max_mb: int, backups: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def setup_logging(
    service_name: str = "integrity-monitor",
    level: str = "INFO",
    log_to_file: bool = False,
    log_to_console: bool = True,
    log_dir: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    Configure the root logger for the monitor service.

    Args:
        service_name: Logger name and log file prefix
        level: Root log level name
        log_to_file: Write daily and error log files
        log_to_console: Write to stdout
        log_dir: Directory for log files (default ./logs)

    Returns:
        The service logger
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers = []

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    if log_to_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        root.addHandler(console)

    log_file = None
    if log_to_file:
        directory = Path(log_dir) if log_dir else Path.cwd() / "logs"
        directory.mkdir(parents=True, exist_ok=True)
        log_file = directory / f"{service_name}_{datetime.now():%Y-%m-%d}.log"
        root.addHandler(_rotating_handler(log_file, logging.DEBUG, 10, 5, formatter))
        root.addHandler(_rotating_handler(
            directory / f"{service_name}_errors.log", logging.ERROR, 5, 3, formatter
        ))

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    logger = logging.getLogger(service_name)
    logger.info(f"{service_name} logging at {level.upper()}"
                + (f", file {log_file}" if log_file else ""))
    return logger
