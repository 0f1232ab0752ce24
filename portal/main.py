"""Entry point for IB Portal API."""

from __future__ import annotations

import uvicorn
from loguru import logger

from config.settings import get_settings
from .context import services
from .logging_config import setup_logging
from .web.app import create_app

app = create_app(services)


def main() -> None:
    settings = get_settings()
    setup_logging(json=settings.is_production)
    logger.info("Запуск uvicorn на {host}:{port}", host=settings.host, port=settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
