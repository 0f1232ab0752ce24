"""Настройка loguru: консоль и файл с ротацией."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

LOG_DIR = Path(__file__).resolve().parent.parent / "logs"


def setup_logging(json: bool = False, level: str = "DEBUG") -> None:
    logger.remove()
    fmt = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
    )
    logger.add(
        sys.stderr,
        format=fmt,
        level=level,
        colorize=not json,
        serialize=json,
        backtrace=False,
        enqueue=True,
    )
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(
        LOG_DIR / "ib_portal.log",
        level="INFO",
        rotation="20 MB",
        retention="14 days",
        compression="zip",
        serialize=json,
        enqueue=True,
    )


__all__ = ["LOG_DIR", "setup_logging"]
