"""Pytest configuration and global fixtures for Storywright tests.

This file provides test fixtures that are automatically available to all tests.
"""

import pytest

from storywright.c1_database_session import DatabaseManager
from storywright.core.config import reload_settings
from storywright.interfaces import completion_interface
from tests.fixtures.mock_completion_provider import CountingCompletionProvider, MockCompletionProvider


@pytest.fixture
def mock_provider():
    """Provide a fresh mock completion provider for each test.

    Usage:
        async def test_something(mock_provider, prd_with_stories):
            mock_provider.queue_response({"qualityScore": 90})
            ...
            assert mock_provider.call_count == 1

    Returns:
        MockCompletionProvider instance
    """
    provider = MockCompletionProvider()
    yield provider
    provider.reset()


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keep host environment variables and API keys out of every test."""
    for name in (
        "LLM_PROVIDER",
        "LLM_MODEL",
        "LLM_ANTHROPIC_API_KEY",
        "LLM_OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "STORYWRIGHT_DB",
        "DATABASE_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    reload_settings()
    yield
    reload_settings()


@pytest.fixture
def test_db(tmp_path, monkeypatch):
    """Point every ``get_db()`` at a fresh file-backed SQLite database.

    Returns:
        Path of the database file
    """
    db_path = tmp_path / "storywright_test.db"
    monkeypatch.setenv("STORYWRIGHT_DB", str(db_path))
    db_manager = DatabaseManager(str(db_path))
    db_manager.create_tables()
    db_manager.dispose()
    return db_path


@pytest.fixture
def prd_with_stories(test_db):
    """A PRD with three stories where Checkout depends on Cart and Cart on Schema.

    Returns:
        Dictionary with the PRD id and the story ids keyed by short name
    """
    from storywright.c2_story_service import DependencyService, PRDService

    prd = PRDService.create_prd(
        workspace_path="/work/shop",
        name="Shop",
        description="An online shop",
        stories=[
            {"title": "Schema", "description": "Tables", "acceptance_criteria": ["Tables exist"], "priority": "high"},
            {"title": "Cart", "description": "Add items", "acceptance_criteria": ["Items can be added"]},
            {"title": "Checkout", "description": "Pay", "acceptance_criteria": ["Card is charged"], "priority": "low"},
        ],
    )
    schema, cart, checkout = (s["id"] for s in prd["stories"])
    DependencyService.add_dependency(prd["id"], cart, schema)
    DependencyService.add_dependency(prd["id"], checkout, cart, reason="Needs cart contents")
    return {"prd_id": prd["id"], "schema": schema, "cart": cart, "checkout": checkout}


@pytest.fixture
def counting_providers(monkeypatch):
    """Serve the global anthropic configuration with ``CountingCompletionProvider``.

    The shared provider state is reset around the test.

    Returns:
        The list that collects every provider the factory builds
    """
    monkeypatch.setitem(completion_interface.COMPLETION_PROVIDERS, "anthropic", CountingCompletionProvider)
    monkeypatch.setattr(CountingCompletionProvider, "instances", [])
    monkeypatch.setattr(completion_interface, "_shared_provider", None)
    monkeypatch.setattr(completion_interface, "_shared_settings", None)
    monkeypatch.setattr(completion_interface, "_retired_providers", [])
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    reload_settings()
    return CountingCompletionProvider.instances
