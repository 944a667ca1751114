"""Rotating logger setup for the patcher service."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Union

# Client libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def resolve_level(level: Union[int, str]) -> int:
    """Accept a level number or a name such as "debug" (from PATCHER_LOG_LEVEL).

    Raises:
        ValueError: If the name is not a logging level
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logger(
    name: str = "patcher",
    log_file: str = "./logs/patcher.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    level: Union[int, str] = logging.INFO,
    console: bool = True,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> logging.Logger:
    """Configure the patcher's log file and console output.

    Child loggers (``patcher.download``, ``patcher.unpack``...) propagate to
    the logger configured here. Calling again only updates the level.

    Args:
        name: Root logger of the service
        log_file: Rotating log file (parent directories are created)
        max_bytes: Max size before rotation
        backup_count: Number of rotated files to keep
        level: Level number or name
        console: Also log to stderr
        quiet: Third-party loggers held at WARNING unless ``level`` is DEBUG

    Returns:
        Configured logger instance
    """
    level = resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)

    noisy_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for noisy in quiet:
        logging.getLogger(noisy).setLevel(noisy_level)

    if logger.handlers:
        return logger

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def log_exception_chain(logger: logging.Logger, exc: BaseException, depth: int = 5) -> None:
    """Log the causes behind ``exc`` (TLS errors usually hide a few levels down)."""
    inner = exc.__cause__ or exc.__context__
    level = 0
    while inner is not None and level < depth:
        logger.debug(f"Inner [{level}]: {type(inner).__name__}: {inner}")
        inner = inner.__cause__ or inner.__context__
        level += 1
