"""Утилита для первичной инициализации базы данных."""

from __future__ import annotations

import asyncio

from loguru import logger

from portal.logging_config import setup_logging
from portal.middlewares.db import init_db


def main() -> None:
    setup_logging()
    asyncio.run(init_db())
    logger.info("Таблицы IB Portal созданы")


if __name__ == "__main__":
    main()
