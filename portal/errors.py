"""Базовые исключения портала, которые отдаются клиенту как 4xx."""

from __future__ import annotations


class PortalError(Exception):
    """Ошибка бизнес-валидации с понятным сообщением для клиента."""

    status_code = 400

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ValidationFailed(PortalError):
    status_code = 400


class AuthenticationFailed(PortalError):
    status_code = 401


class AccessDenied(PortalError):
    status_code = 403


class NotFound(PortalError):
    status_code = 404


class Conflict(PortalError):
    status_code = 409


__all__ = [
    "AccessDenied",
    "AuthenticationFailed",
    "Conflict",
    "NotFound",
    "PortalError",
    "ValidationFailed",
]
