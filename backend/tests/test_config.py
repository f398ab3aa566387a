from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import Settings  # noqa: E402


def test_production_security_gate_rejects_default_secret():
    settings = Settings(ENVIRONMENT="production", SECRET_KEY="change-me-in-production")
    with pytest.raises(RuntimeError):
        settings.validate_security_configuration()


def test_production_security_gate_rejects_wildcard_cors():
    settings = Settings(ENVIRONMENT="staging", SECRET_KEY="x" * 40, CORS_ORIGINS=["*"])
    with pytest.raises(RuntimeError):
        settings.validate_security_configuration()


def test_production_security_gate_accepts_hardened_settings():
    settings = Settings(
        ENVIRONMENT="production",
        SECRET_KEY="x" * 40,
        CORS_ORIGINS=["https://planner.example.com"],
        DATABASE_URL="postgresql+psycopg://planner@db/planner",
    )
    settings.validate_security_configuration()
    assert settings.is_production_like is True
    assert settings.is_sqlite is False


def test_development_settings_skip_the_gate():
    Settings(ENVIRONMENT="development").validate_security_configuration()
