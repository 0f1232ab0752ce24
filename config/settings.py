"""Глобальные настройки IB Portal.

Настройки разделены по доменам (БД, кеш, брокерский API, синхронизация, выводы
средств и т.д.). Вся конфигурация загружается из переменных окружения через
Pydantic Settings, вложенные секции задаются через ``__``
(например ``BROKER__BASE_URL``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
ACCESSIBLE_ENV_FILE = BASE_DIR / "config" / "runtime.env"
DEFAULT_ENV_FILE = BASE_DIR / ".env"
ENV_FILE = ACCESSIBLE_ENV_FILE if ACCESSIBLE_ENV_FILE.exists() else DEFAULT_ENV_FILE


class CacheSettings(BaseModel):
    """Настройки кешей (aiocache поддерживает memory / redis)."""

    backend: Literal["memory", "redis"] = "memory"
    ttl_seconds: int = 60
    redis_dsn: str | None = None


class DatabaseSettings(BaseModel):
    """SQLModel + aiosqlite (по умолчанию) и готовность к Postgres."""

    dsn: str = Field(
        "sqlite+aiosqlite:///./database/ib_portal.db",
        description="Строка подключения SQLAlchemy/SQLModel",
    )
    echo: bool = False


class BrokerSettings(BaseModel):
    """REST API торговой платформы MT5."""

    base_url: AnyHttpUrl = Field(
        "http://localhost:5003", description="Базовый URL брокерского API"
    )
    request_timeout_sec: PositiveFloat = 8.0
    retry_timeout_sec: PositiveFloat = Field(
        12.0, description="Таймаут единственного повторного запроса"
    )
    page_size: PositiveInt = 1000
    max_pages: PositiveInt = 20

    @field_validator("retry_timeout_sec")
    @classmethod
    def _retry_not_shorter(cls, value: float, info) -> float:
        first = info.data.get("request_timeout_sec")
        if first is not None and value < first:
            raise ValueError("retry_timeout_sec не может быть меньше request_timeout_sec")
        return value


class SyncSettings(BaseModel):
    """Авто-синхронизация сделок."""

    enabled: bool = True
    interval_sec: PositiveInt = 300
    initial_delay_sec: int = 60
    lookback_days: PositiveInt = 7
    manual_lookback_days: PositiveInt = 90
    concurrency: PositiveInt = 4


class WithdrawalSettings(BaseModel):
    """Политика заявок на вывод."""

    allow_full_available: bool = Field(
        True, description="Разрешать заявку ровно на весь доступный баланс"
    )
    default_period_days: int | None = None
    recent_limit: PositiveInt = 10


class PortalSettings(BaseModel):
    """Публичная часть портала."""

    frontend_url: AnyHttpUrl = Field(
        "http://localhost:3000", description="Адрес фронтенда для реферальных ссылок"
    )
    referral_code_max_length: PositiveInt = 8
    rate_limit_requests: int = Field(
        100, description="Запросов на окно с одного IP (0 отключает лимит)"
    )
    rate_limit_window_sec: PositiveInt = 900
    rate_limit_max_clients: PositiveInt = Field(
        10_000, description="Сколько окон держать до чистки просроченных"
    )


class SecuritySettings(BaseModel):
    """JWT, пароли и ключ администратора."""

    jwt_secret: SecretStr = Field(..., description="Секрет для подписания JWT")
    jwt_algorithm: str = "HS256"
    jwt_ttl_minutes: int = 720
    bcrypt_rounds: int = Field(12, ge=4, le=31)
    admin_api_key: SecretStr | None = Field(
        None, description="Ключ заголовка X-Admin-Key для админских ручек"
    )

    @field_validator("admin_api_key", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class AppSettings(BaseSettings):
    """Главный контейнер настроек IB Portal."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["dev", "prod"] = "dev"
    host: str = "0.0.0.0"
    port: int = 8000
    cache: CacheSettings = CacheSettings()
    database: DatabaseSettings = DatabaseSettings()
    broker: BrokerSettings = BrokerSettings()
    sync: SyncSettings = SyncSettings()
    withdrawals: WithdrawalSettings = WithdrawalSettings()
    portal: PortalSettings = PortalSettings()
    security: SecuritySettings

    @property
    def is_production(self) -> bool:
        """True, если портал запущен в продовой среде."""

        return self.environment == "prod"


# Ленивый синглтон (избегаем глобальных переменных в модулях).
_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    """Возвращает единый экземпляр настроек.

    Значения кэшируются, поэтому инициализация .env происходит ровно один раз
    за процесс.
    """

    global _settings
    if _settings is None:
        _settings = AppSettings()  # type: ignore[call-arg]
    return _settings


__all__ = [
    "AppSettings",
    "BrokerSettings",
    "CacheSettings",
    "DatabaseSettings",
    "PortalSettings",
    "SecuritySettings",
    "SyncSettings",
    "WithdrawalSettings",
    "get_settings",
]
