"""
tests/test_jwt_startup.py — Admin Token Secret
===============================================
The API refuses to start with a missing, short or well-known JWT_SECRET,
and the admin routes (forced resets, timezone overrides) only honour
tokens signed with the secret that was actually loaded.
"""

from __future__ import annotations

import importlib
import os
from unittest.mock import patch

import jwt
import pytest
from fastapi.testclient import TestClient

import hourglass.api.deps as deps_mod
from hourglass.api.routes import admin as admin_routes
from hourglass.services.reset_service import ResetScheduler
from hourglass.services.timezone_service import TimezoneService

ROTATED_SECRET = "rotated-" + "r" * 48


def _token(secret: str, *, is_admin: bool = True) -> dict:
    token = jwt.encode(
        {"sub": "4242", "username": "Moderator", "is_admin": is_admin},
        secret,
        algorithm=deps_mod.JWT_ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


# ===========================================================================
# Startup validation
# ===========================================================================
class TestJWTSecretValidation:
    """The loader runs at import time, so each case reloads the deps module."""

    def _reload(self) -> str:
        importlib.reload(deps_mod)
        return deps_mod.JWT_SECRET

    @pytest.mark.parametrize(
        ("secret", "message"),
        [
            ("", "JWT_SECRET environment variable is not set"),
            ("hourglass-dev-secret-change-me", "known weak default"),
            ("change-me", "known weak default"),
            ("tooshort", "too short"),
        ],
    )
    def test_rejects_unusable_secret(self, secret, message):
        with patch.dict(os.environ, {"JWT_SECRET": secret}):
            with pytest.raises(RuntimeError, match=message):
                self._reload()

    def test_rejects_missing_secret(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("JWT_SECRET", None)
            with pytest.raises(RuntimeError, match="not set"):
                self._reload()

    def test_accepts_strong_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": ROTATED_SECRET}):
            assert self._reload() == ROTATED_SECRET

    @pytest.fixture(autouse=True)
    def _restore_jwt_secret(self):
        original = os.environ.get("JWT_SECRET")
        yield
        if original is not None:
            os.environ["JWT_SECRET"] = original
        else:
            os.environ.pop("JWT_SECRET", None)
        try:
            importlib.reload(deps_mod)
        except RuntimeError:
            pass  # no usable secret in this environment; later imports will say so


# ===========================================================================
# Admin routes honour the loaded secret
# ===========================================================================
class TestAdminRoutesUseLoadedSecret:
    @pytest.fixture
    def client(self, db_engine, cfg, monkeypatch):
        from hourglass.api.main import app

        monkeypatch.setattr(deps_mod, "JWT_SECRET", ROTATED_SECRET)
        timezones = TimezoneService(db_engine)
        scheduler = ResetScheduler(db_engine, cfg, timezones=timezones)
        app.dependency_overrides[admin_routes.get_scheduler] = lambda: scheduler
        app.dependency_overrides[admin_routes.get_timezones] = lambda: timezones
        yield TestClient(app, raise_server_exceptions=False)
        app.dependency_overrides.clear()

    def test_token_from_a_previous_secret_is_rejected(self, client):
        stale = _token("test-secret-for-pytest-only-" + "x" * 40)
        assert client.post("/api/admin/resets/daily", headers=stale).status_code == 401

    def test_forced_reset_with_current_secret(self, client):
        resp = client.post("/api/admin/resets/daily", headers=_token(ROTATED_SECRET))
        assert resp.status_code == 200
        assert resp.json()["operation"] == "daily_reset"

    def test_non_admin_claim_cannot_override_a_timezone(self, client):
        resp = client.put(
            "/api/admin/members/7/timezone",
            json={"timezone": "Asia/Tokyo"},
            headers=_token(ROTATED_SECRET, is_admin=False),
        )
        assert resp.status_code == 403

    def test_admin_timezone_override(self, client):
        resp = client.put(
            "/api/admin/members/7/timezone",
            json={"timezone": "Asia/Tokyo", "display_name": "Seven"},
            headers=_token(ROTATED_SECRET),
        )
        assert resp.status_code == 200
        assert resp.json()["timezone"] == "Asia/Tokyo"
