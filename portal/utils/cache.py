"""Единая точка настройки aiocache."""

from __future__ import annotations

from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

from aiocache import caches
from aiocache.base import BaseCache

from config.settings import get_settings

_configured = False

# Кешируем dataclass-результаты, поэтому сериализатор pickle и для memory, и для redis.
_SERIALIZER = {"class": "aiocache.serializers.PickleSerializer"}


def configure_cache() -> None:
    """Настраивает aiocache в зависимости от backend (memory/redis)."""

    global _configured
    if _configured:
        return

    settings = get_settings()
    if settings.cache.backend == "redis":
        config = _build_redis_config(settings.cache.redis_dsn)
        caches.set_config(
            {
                "default": {
                    "cache": "aiocache.RedisCache",
                    **config,
                    "ttl": settings.cache.ttl_seconds,
                    "serializer": _SERIALIZER,
                }
            }
        )
    else:
        caches.set_config(
            {
                "default": {
                    "cache": "aiocache.SimpleMemoryCache",
                    "ttl": settings.cache.ttl_seconds,
                    "serializer": _SERIALIZER,
                }
            }
        )
    _configured = True


def get_cache(alias: str = "default") -> BaseCache:
    """Возвращает кеш по алиасу (предварительно гарантирует конфиг)."""

    configure_cache()
    return caches.get(alias)


async def cached_call(
    cache: BaseCache,
    key: str,
    ttl: int,
    factory: Callable[[], Awaitable[Any]],
) -> Any:
    """Мини-хелпер: если значение отсутствует - вызывает factory."""

    value = await cache.get(key)
    if value is not None:
        return value
    value = await factory()
    await cache.set(key, value, ttl=ttl)
    return value


def _build_redis_config(dsn: str | None) -> dict[str, Any]:
    if not dsn:
        raise RuntimeError("CACHE__BACKEND=redis, но redis_dsn не указан")
    parsed = urlparse(dsn)
    if parsed.scheme not in {"redis", "rediss"}:
        raise ValueError(f"Неподдерживаемая схема Redis DSN: {parsed.scheme}")
    db = 0
    if parsed.path and parsed.path != "/":
        try:
            db = int(parsed.path.lstrip("/"))
        except ValueError:
            db = 0
    return {
        "endpoint": parsed.hostname or "localhost",
        "port": parsed.port or 6379,
        "password": parsed.password,
        "db": db,
    }


__all__ = ["cached_call", "configure_cache", "get_cache"]
