"""Advanced logging with Loguru."""

import contextvars
import logging
import sys
from pathlib import Path
from types import FrameType
from typing import Any, Dict, Optional

from loguru import logger

# Context variable for the booking session being served
booking_session_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "booking_session_id", default=None
)

__all__ = ["booking_session_ctx", "setup_structured_logging", "InterceptHandler"]


def _session_patcher(record: Dict[str, Any]) -> None:
    """
    Patch log records with the booking session id from context.

    Called by Loguru for each record so every line of one booking flow can be
    grouped together.
    """
    session_id = booking_session_ctx.get()
    record["extra"]["booking_session_id"] = session_id or "-"


class InterceptHandler(logging.Handler):
    """Route stdlib ``logging`` records into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame: Optional[FrameType] = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_structured_logging(
    level: str = "INFO",
    json_format: bool = False,
    logs_dir: Optional[Path] = None,
    diagnose: bool = False,
) -> None:
    """
    Setup Loguru logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Write the file sink as JSON lines
        logs_dir: Directory for file sinks; console only when None
        diagnose: Include variable values in tracebacks (development only)
    """
    logger.remove()
    logger.configure(patcher=_session_patcher)

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<magenta>{extra[booking_session_id]}</magenta> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )
    logger.add(sys.stdout, format=console_format, level=level, colorize=True)

    if logs_dir is not None:
        logs_dir.mkdir(parents=True, exist_ok=True)
        if json_format:
            logger.add(
                logs_dir / "booking.jsonl",
                format="{message}",
                level=level,
                rotation="10 MB",
                retention="30 days",
                compression="zip",
                serialize=True,
            )
        else:
            logger.add(
                logs_dir / "booking.log",
                format=(
                    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[booking_session_id]} | "
                    "{name}:{function}:{line} - {message}"
                ),
                level=level,
                rotation="10 MB",
                retention="30 days",
                compression="zip",
            )
        logger.add(
            logs_dir / "errors_{time:YYYY-MM-DD}.log",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} - {message}",
            level="ERROR",
            rotation="10 MB",
            retention="90 days",
            backtrace=True,
            diagnose=diagnose,
        )

    # Intercept all standard logging
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.root.setLevel(getattr(logging, level))

    logger.info(f"Logging initialized (level={level}, json={json_format})")
