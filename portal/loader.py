"""Loader IB Portal: запуск и остановка фоновых модулей."""

from __future__ import annotations

from loguru import logger

from config.settings import get_settings
from .context import PortalServices
from .middlewares import init_db


async def on_startup(services: PortalServices) -> None:
    """Таблицы (dev), HTTP-клиент MT5, авто-синхронизация."""

    settings = get_settings()
    logger.info("IB Portal стартует в окружении {env}", env=settings.environment)
    if not settings.is_production:
        logger.debug("on_startup: create tables")
        await init_db()
    logger.debug("on_startup: start MT5 client")
    await services.broker.start()
    if settings.sync.enabled:
        logger.debug("on_startup: start trade sync scheduler")
        await services.scheduler.start()
    else:
        logger.info("Авто-синхронизация отключена настройкой SYNC__ENABLED")
    logger.info("on_startup завершён, портал готов принимать запросы")


async def on_shutdown(services: PortalServices) -> None:
    """Мягкое выключение сервиса."""

    await services.scheduler.stop()
    await services.broker.close()
    logger.info("IB Portal корректно остановлен")


__all__ = ["on_shutdown", "on_startup"]
