"""FastAPI backend партнёрского портала IB."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from config.settings import get_settings
from portal.context import PortalServices
from portal.loader import on_shutdown, on_startup
from portal.middlewares import ThrottlingMiddleware, register_error_handlers
from . import admin_routes, auth_routes, user_routes
from .deps import ok


def create_app(services: PortalServices) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await on_startup(services)
        yield
        await on_shutdown(services)

    app = FastAPI(title="IB Partner Portal API", lifespan=lifespan)
    app.state.services = services
    register_error_handlers(app)
    app.add_middleware(
        ThrottlingMiddleware,
        limit=settings.portal.rate_limit_requests,
        window_sec=settings.portal.rate_limit_window_sec,
        max_clients=settings.portal.rate_limit_max_clients,
    )
    app.include_router(auth_routes.router)
    app.include_router(user_routes.router)
    app.include_router(admin_routes.router)

    @app.get("/api/health")
    async def health() -> dict:
        return ok(
            {
                "status": "ok",
                "environment": settings.environment,
                "sync": services.scheduler.state,
            }
        )

    return app


__all__ = ["create_app"]
