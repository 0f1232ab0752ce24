"""Глобальный перехват и логирование ошибок FastAPI."""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from portal.errors import PortalError


def error_body(message: str, code: str | None = None) -> dict:
    body: dict = {"success": False, "message": message}
    if code:
        body["code"] = code
    return body


async def _portal_error(request: Request, exc: PortalError) -> JSONResponse:
    logger.info(
        "Отказ {method} {path}: {message}",
        method=request.method,
        path=request.url.path,
        message=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.code))


async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Некорректный запрос")
    if field:
        message = f"{field}: {message}"
    return JSONResponse(status_code=422, content=error_body(message, "validation_error"))


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Ошибка при обработке запроса {method} {path}: {error}",
        method=request.method,
        path=request.url.path,
        error=exc,
    )
    return JSONResponse(status_code=500, content=error_body("Внутренняя ошибка сервера"))


def register_error_handlers(app: FastAPI) -> None:
    """Подключает единый формат {success: false, message} для всех ошибок."""

    app.add_exception_handler(PortalError, _portal_error)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error)


__all__ = ["error_body", "register_error_handlers"]
