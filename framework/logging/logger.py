import sys
from pathlib import Path
from contextvars import ContextVar
from typing import Optional
from loguru import logger
from fastapi import Request
from framework.config import settings

# Store current request in contextvars for async context
_current_request: ContextVar[Optional[Request]] = ContextVar("current_request", default=None)

# Ensure log directory exists
LOG_DIR = Path(settings.LOG_DIR)
LOG_DIR.mkdir(exist_ok=True)

DATA_ACCESS_CHANNEL = "data"


def _is_data_access(record) -> bool:
    return record["extra"].get("channel") == DATA_ACCESS_CHANNEL


class LogConfig:
    """Global logging configuration using Loguru."""
    @classmethod
    def setup_logging(cls):
        logger.remove()

        logger.add(
            sys.stdout,
            enqueue=True,
            backtrace=True,
            diagnose=settings.DEBUG,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "<magenta>Trace:{extra[trace_id]}</magenta> - <level>{message}</level>"
            ),
            level=settings.LOG_LEVEL,
        )

        logger.add(
            LOG_DIR / "app_{time:YYYY-MM-DD}.log",
            rotation="00:00",
            retention="30 days",
            compression="zip",
            enqueue=True,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | Trace:{extra[trace_id]} - {message}",
            level="DEBUG",
            filter=lambda record: not _is_data_access(record),
        )

        # Finder executions, bulk updates and transaction boundaries
        if settings.LOG_DATA_ACCESS:
            logger.add(
                LOG_DIR / "data_access_{time:YYYY-MM-DD}.log",
                rotation="00:00",
                retention="7 days",
                compression="zip",
                enqueue=True,
                format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | Trace:{extra[trace_id]} | {extra[repository]} - {message}",
                level="DEBUG",
                filter=_is_data_access,
            )

        logger.add(
            LOG_DIR / "error_{time:YYYY-MM-DD}.log",
            level="ERROR",
            rotation="100 MB",
            enqueue=True,
        )

        logger.configure(extra={"trace_id": "system", "repository": "-"})


def _trace_id(request: Optional[Request]) -> str:
    current_request = request or _current_request.get()
    if current_request is not None:
        return getattr(current_request.state, "trace_id", "unknown")
    return "unknown"


def get_logger(name: str = None, request: Optional[Request] = None):
    """Get logger instance; optionally pass request for trace_id, else from context."""
    trace_id = _trace_id(request)
    if name:
        return logger.bind(name=name, trace_id=trace_id)
    else:
        return logger.bind(trace_id=trace_id)


def get_data_logger(repository: str):
    """Logger for the data-access channel, tagged with the repository name."""
    return logger.bind(channel=DATA_ACCESS_CHANNEL, repository=repository, trace_id=_trace_id(None))
