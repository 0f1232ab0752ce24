"""FastAPI-зависимости: сервисы, сессия БД, текущий партнёр, админ."""

from __future__ import annotations

import hmac
from typing import Any, AsyncIterator

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from portal.context import PortalServices
from portal.errors import AccessDenied, AuthenticationFailed
from portal.models import IBPartner
from portal.utils.security import decode_session_token

bearer_scheme = HTTPBearer(auto_error=False)


def ok(data: Any = None, **extra: Any) -> dict:
    """Конверт успешного ответа."""

    return {"success": True, "data": data, **extra}


def get_services(request: Request) -> PortalServices:
    return request.app.state.services


async def get_db_session(
    services: PortalServices = Depends(get_services),
) -> AsyncIterator[AsyncSession]:
    async with services.session_maker() as session:
        yield session


async def get_current_partner(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> IBPartner:
    if credentials is None:
        raise AuthenticationFailed("Требуется авторизация", code="token_required")
    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise AuthenticationFailed(str(exc), code="invalid_token") from exc
    return await services.partners.get_approved(session, payload["partner_id"])


def require_admin(x_admin_key: str | None = Header(None, alias="X-Admin-Key")) -> None:
    expected = get_settings().security.admin_api_key
    if expected is None:
        raise AccessDenied("Админский доступ не настроен", code="admin_disabled")
    if not x_admin_key or not hmac.compare_digest(
        x_admin_key.encode("utf-8"), expected.get_secret_value().encode("utf-8")
    ):
        raise AccessDenied("Неверный ключ администратора", code="admin_forbidden")


__all__ = [
    "bearer_scheme",
    "get_current_partner",
    "get_db_session",
    "get_services",
    "ok",
    "require_admin",
]
