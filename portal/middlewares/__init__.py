"""Набор middleware для IB Portal."""

from .db import get_session_maker, init_db
from .errors import error_body, register_error_handlers
from .throttling import ThrottlingMiddleware

__all__ = [
    "ThrottlingMiddleware",
    "error_body",
    "get_session_maker",
    "init_db",
    "register_error_handlers",
]
