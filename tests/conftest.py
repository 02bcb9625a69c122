"""Pytest configuration and fixtures."""

import os

import pytest

from tests.fakes.fake_supabase import FakeSupabase

DB_MODULES = (
    "tracelayer.db.projects",
    "tracelayer.db.sources",
    "tracelayer.db.requirements",
    "tracelayer.db.stakeholders",
    "tracelayer.db.decisions",
    "tracelayer.db.timeline",
    "tracelayer.db.conflicts",
    "tracelayer.db.traceability",
    "tracelayer.db.extraction_runs",
    "tracelayer.db.agent_logs",
    "tracelayer.db.documents",
    "tracelayer.db.insights",
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["TRACELAYER_ENV"] = "test"
    os.environ["STAGE_RETRY_BACKOFF_SECONDS"] = "0"


@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read settings for every test so env overrides apply."""
    from tracelayer.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_db(monkeypatch: pytest.MonkeyPatch) -> FakeSupabase:
    """In-memory Supabase wired into every db module."""
    db = FakeSupabase()
    for module in DB_MODULES:
        monkeypatch.setattr(f"{module}.get_supabase", lambda: db)
    return db


@pytest.fixture
def project(fake_db: FakeSupabase) -> dict:
    from tracelayer.db.projects import create_project

    return create_project("Checkout Revamp", "Rebuild the checkout flow")
