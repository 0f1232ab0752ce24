"""Простое антиспам middleware: фиксированное окно на IP."""

from __future__ import annotations

import asyncio
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from .errors import error_body


class ThrottlingMiddleware(BaseHTTPMiddleware):
    """Ограничивает частоту запросов к /api с одного адреса.

    Когда адресов больше ``max_clients``, просроченные окна удаляются перед
    записью нового.
    """

    def __init__(
        self,
        app: ASGIApp,
        limit: int = 100,
        window_sec: float = 900.0,
        max_clients: int = 10_000,
    ) -> None:
        super().__init__(app)
        self.limit = limit
        self.window_sec = window_sec
        self.max_clients = max_clients
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = asyncio.Lock()
        self._clock = time.monotonic

    @property
    def tracked_clients(self) -> int:
        return len(self._windows)

    def _evict_expired(self, now: float) -> None:
        expired = [
            client
            for client, (started, _) in self._windows.items()
            if now - started >= self.window_sec
        ]
        for client in expired:
            del self._windows[client]

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self.limit <= 0 or not request.url.path.startswith("/api"):
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        async with self._lock:
            now = self._clock()
            started, count = self._windows.get(client, (now, 0))
            if now - started >= self.window_sec:
                started, count = now, 0
            if count >= self.limit:
                retry_after = int(self.window_sec - (now - started)) + 1
                return JSONResponse(
                    status_code=429,
                    content=error_body("Слишком много запросов, попробуйте позже"),
                    headers={"Retry-After": str(retry_after)},
                )
            if client not in self._windows and len(self._windows) >= self.max_clients:
                self._evict_expired(now)
            self._windows[client] = (started, count + 1)

        return await call_next(request)


__all__ = ["ThrottlingMiddleware"]
