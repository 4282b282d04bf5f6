"""
hourglass.api.deps — FastAPI dependency injection
==================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from hourglass.config import HourglassConfig, load_config
from hourglass.database.engine import create_db_engine
from hourglass.engine.cache import StatsCache
from hourglass.services.reset_service import ResetScheduler
from hourglass.services.timezone_service import TimezoneService

_WEAK_SECRETS = frozenset({
    "hourglass-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> HourglassConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_stats_cache() -> StatsCache:
    return StatsCache()


def get_timezones(
    engine: Annotated[Engine, Depends(get_engine)],
) -> TimezoneService:
    return _timezone_service(engine)


@lru_cache(maxsize=4)
def _timezone_service(engine: Engine) -> TimezoneService:
    return TimezoneService(engine)


def get_scheduler(
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[HourglassConfig, Depends(get_config)],
    cache: Annotated[StatsCache, Depends(get_stats_cache)],
) -> ResetScheduler:
    return _scheduler(engine, cfg, cache)


@lru_cache(maxsize=4)
def _scheduler(engine: Engine, cfg: HourglassConfig, cache: StatsCache) -> ResetScheduler:
    # One scheduler per engine so its job locks are shared across requests
    return ResetScheduler(engine, cfg, timezones=_timezone_service(engine), cache=cache)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload
