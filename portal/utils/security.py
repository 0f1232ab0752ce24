"""JWT-сессии партнёров и хеширование паролей."""

from __future__ import annotations

import time
from typing import Any, Dict

import bcrypt
import jwt
from jwt import InvalidTokenError

from config.settings import get_settings


def issue_session_token(partner_id: int, email: str, ttl_minutes: int | None = None) -> str:
    """Выдаёт JWT для авторизации партнёра в портале."""

    security = get_settings().security
    ttl = ttl_minutes or security.jwt_ttl_minutes
    now = int(time.time())
    payload = {
        "sub": str(partner_id),
        "email": email,
        "iat": now,
        "exp": now + ttl * 60,
    }
    return jwt.encode(
        payload,
        security.jwt_secret.get_secret_value(),
        algorithm=security.jwt_algorithm,
    )


def decode_session_token(token: str) -> Dict[str, Any]:
    """Валидирует и возвращает payload JWT."""

    security = get_settings().security
    try:
        payload = jwt.decode(
            token,
            security.jwt_secret.get_secret_value(),
            algorithms=[security.jwt_algorithm],
        )
    except InvalidTokenError as exc:
        raise ValueError("Недействительный токен сессии") from exc
    try:
        payload["partner_id"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError("В токене нет идентификатора партнёра") from exc
    return payload


def hash_password(password: str) -> str:
    rounds = get_settings().security.bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # битый хеш в базе
        return False


__all__ = ["decode_session_token", "hash_password", "issue_session_token", "verify_password"]
